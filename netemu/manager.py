"""Topology manager: binds one Topology to one cluster."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import closing
from typing import Any, BinaryIO, Callable, Dict, List, Optional, TextIO, Union

from netemu.cluster import MESHNET_GROUP, MESHNET_VERSION, Cluster, ClusterOptions, KubeCluster
from netemu.errors import (
    InvalidTopologyError,
    NodeFailedError,
    NodeNotFoundError,
    NodeNotReadyError,
    OperationCancelled,
    StatusTimeoutError,
    TopologyExistsError,
    TopologyNotFoundError,
)
from netemu.settings import Settings, get_settings
from netemu.state_map import StateMap
from netemu.topology import Node, NodeStatus, Resources, Topology, TopoState

logger = logging.getLogger(__name__)


def _check_cancelled(cancel: Optional[threading.Event], what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"{what} cancelled")


class TopologyManager(ABC):
    """Lifecycle operations and read accessors for one topology."""

    @abstractmethod
    def load(self, cancel: Optional[threading.Event] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def push(self, cancel: Optional[threading.Event] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, cancel: Optional[threading.Event] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def watch(self, cancel: threading.Event) -> None:
        raise NotImplementedError

    @abstractmethod
    def check_node_status(self, timeout: float, cancel: Optional[threading.Event] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def config_push(
        self,
        node_name: str,
        reader: Union[BinaryIO, TextIO],
        cancel: Optional[threading.Event] = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def resources(self, cancel: Optional[threading.Event] = None) -> Resources:
        raise NotImplementedError

    @abstractmethod
    def topology_proto(self) -> Optional[Topology]:
        raise NotImplementedError

    @abstractmethod
    def topology(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def nodes(self) -> List[Node]:
        raise NotImplementedError

    @abstractmethod
    def node(self, name: str) -> Node:
        raise NotImplementedError

    @abstractmethod
    def topology_specs(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def topology_resources(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def topo_state(self) -> TopoState:
        raise NotImplementedError


ManagerFactory = Callable[[str, Topology, ClusterOptions], TopologyManager]


class KubeTopologyManager(TopologyManager):
    """
    Topology manager backed by a Cluster (the Kubernetes API by default).

    Internally it keeps a node registry and a per-node link table built by
    load(). Node status arrives through watch() and is aggregated by the
    StateMap; the aggregate is recomputed on every topo_state() call.
    """

    def __init__(
        self,
        name: str,
        topo: Topology,
        options: Optional[ClusterOptions] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.name = name
        self._proto = topo
        self.options = options or ClusterOptions()
        self.settings = settings or get_settings()
        self.cluster: Cluster = self.options.cluster or KubeCluster(self.options, self.settings)
        self.state_map = StateMap()

        self._lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}
        self._links: Dict[str, List[Dict[str, Any]]] = {}
        self._loaded = False

    # -------- lifecycle --------

    def load(self, cancel: Optional[threading.Event] = None) -> None:
        """Build node and link bookkeeping from the topology. No cluster I/O."""
        _check_cancelled(cancel, f"load of {self.name}")
        with self._lock:
            nodes: Dict[str, Node] = {}
            for node in self._proto.nodes:
                if node.name in nodes:
                    raise InvalidTopologyError(f"duplicate node {node.name!r}")
                nodes[node.name] = node

            links: Dict[str, List[Dict[str, Any]]] = {name: [] for name in nodes}
            for uid, link in enumerate(self._proto.links):
                for local, peer in (
                    ((link.a_node, link.a_int), (link.z_node, link.z_int)),
                    ((link.z_node, link.z_int), (link.a_node, link.a_int)),
                ):
                    if local[0] not in nodes:
                        raise InvalidTopologyError(f"link {uid} references undeclared node {local[0]!r}")
                    links[local[0]].append({
                        "uid": uid,
                        "peer_pod": peer[0],
                        "local_intf": local[1],
                        "peer_intf": peer[1],
                        "local_ip": "",
                        "peer_ip": "",
                    })

            self._nodes = nodes
            self._links = links
            self._loaded = True
        logger.info(f"Loaded topology {self.name}: {len(self._nodes)} nodes, {len(self._proto.links)} links")

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def push(self, cancel: Optional[threading.Event] = None) -> None:
        """Create namespace, meshnet resources, pods and services. One attempt, no rollback."""
        self._ensure_loaded()
        _check_cancelled(cancel, f"push of {self.name}")
        if self.cluster.topology_exists(self.name):
            raise TopologyExistsError(self.name)

        self.cluster.create_namespace(self.name)
        _check_cancelled(cancel, f"push of {self.name}")
        self.cluster.create_link_specs(self.name, self.topology_specs())
        for node in self._nodes.values():
            _check_cancelled(cancel, f"push of {self.name}")
            self.cluster.create_node(self.name, node)
        logger.info(f"Pushed topology {self.name}")

    def delete(self, cancel: Optional[threading.Event] = None) -> None:
        """Remove everything push() creates. Deleting an absent topology is an error."""
        self._ensure_loaded()
        _check_cancelled(cancel, f"delete of {self.name}")
        if not self.cluster.topology_exists(self.name):
            raise TopologyNotFoundError(self.name)

        for name in self._nodes:
            _check_cancelled(cancel, f"delete of {self.name}")
            self.cluster.delete_node(self.name, name)
        self.cluster.delete_link_specs(self.name, list(self._nodes))
        self.cluster.delete_namespace(self.name)
        logger.info(f"Deleted topology {self.name}")

    def watch(self, cancel: threading.Event) -> None:
        """Feed pod phase events into the StateMap until cancel is set."""
        self._ensure_loaded()
        last = self.state_map.topo_state()
        logger.info(f"Watching node status for topology {self.name}")
        with closing(self.cluster.watch_node_phases(self.name, cancel)) as events:
            for node_name, phase in events:
                if node_name not in self._nodes:
                    logger.debug(f"Ignoring event for unknown node {node_name} in {self.name}")
                    continue
                self.state_map.set_node_state(node_name, NodeStatus.from_phase(phase))
                state = self.state_map.topo_state()
                if state != last:
                    logger.info(f"Topology {self.name} state {last.name} -> {state.name}")
                    last = state
        logger.info(f"Stopped watching topology {self.name}")

    def check_node_status(self, timeout: float, cancel: Optional[threading.Event] = None) -> None:
        """
        Poll node phases until every node is running.

        Raises:
            NodeFailedError: as soon as any node reports Failed
            StatusTimeoutError: timeout elapsed with nodes still not running
            OperationCancelled: cancel was set while waiting
        """
        self._ensure_loaded()
        deadline = time.monotonic() + timeout
        while True:
            _check_cancelled(cancel, f"status check of {self.name}")
            pending = []
            for name in self._nodes:
                status = NodeStatus.from_phase(self.cluster.node_phase(self.name, name))
                if status == NodeStatus.FAILED:
                    raise NodeFailedError(f"node {name!r} in topology {self.name!r} failed")
                if status != NodeStatus.RUNNING:
                    pending.append(name)

            if not pending:
                logger.info(f"All {len(self._nodes)} nodes of {self.name} are running")
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StatusTimeoutError(
                    f"timed out after {timeout}s waiting for nodes {', '.join(pending)} of {self.name!r}"
                )
            wait = min(self.settings.poll_interval_s, remaining)
            if cancel is not None:
                if cancel.wait(wait):
                    raise OperationCancelled(f"status check of {self.name} cancelled")
            else:
                time.sleep(wait)

    def config_push(
        self,
        node_name: str,
        reader: Union[BinaryIO, TextIO],
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Stream opaque config from reader into a running node."""
        self._ensure_loaded()
        if node_name not in self._nodes:
            raise NodeNotFoundError(node_name)
        _check_cancelled(cancel, f"config push to {node_name}")

        status = NodeStatus.from_phase(self.cluster.node_phase(self.name, node_name))
        if status != NodeStatus.RUNNING:
            raise NodeNotReadyError(f"node {node_name!r} is not running (status {status.name})")

        data = reader.read()
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.cluster.exec_config(self.name, node_name, data, self.settings.config_path, cancel)

    def resources(self, cancel: Optional[threading.Event] = None) -> Resources:
        """Fresh lookup of the live services backing each node."""
        self._ensure_loaded()
        res = Resources()
        for name in self._nodes:
            _check_cancelled(cancel, f"resource lookup of {self.name}")
            records = self.cluster.node_services(self.name, name)
            if records:
                res.services[name] = records
        return res

    # -------- read accessors --------

    def topology_proto(self) -> Topology:
        return self._proto

    def topology(self) -> List[Dict[str, Any]]:
        """Live meshnet topology objects in the topology namespace."""
        return self.cluster.list_link_specs(self.name)

    def nodes(self) -> List[Node]:
        self._ensure_loaded()
        return list(self._nodes.values())

    def node(self, name: str) -> Node:
        self._ensure_loaded()
        try:
            return self._nodes[name]
        except KeyError:
            raise NodeNotFoundError(name) from None

    def topology_specs(self) -> List[Dict[str, Any]]:
        """Declared meshnet topology objects, one per node."""
        self._ensure_loaded()
        with self._lock:
            return [
                {
                    "apiVersion": f"{MESHNET_GROUP}/{MESHNET_VERSION}",
                    "kind": "Topology",
                    "metadata": {
                        "name": name,
                        "namespace": self.name,
                        "labels": {"topo": self.name},
                    },
                    "spec": {"links": [dict(link) for link in self._links.get(name, [])]},
                }
                for name in self._nodes
            ]

    def topology_resources(self) -> List[Dict[str, Any]]:
        """Live meshnet objects that belong to declared nodes, ordered by node name."""
        self._ensure_loaded()
        live = [t for t in self.topology() if t.get("metadata", {}).get("name") in self._nodes]
        return sorted(live, key=lambda t: t["metadata"]["name"])

    def topo_state(self) -> TopoState:
        return self.state_map.topo_state()


def new_topology_manager(name: str, topo: Topology, options: Optional[ClusterOptions] = None) -> TopologyManager:
    """Default ManagerFactory."""
    return KubeTopologyManager(name, topo, options)
