"""In-memory Cluster used by tests and local dry runs."""

from __future__ import annotations

import copy
import queue
import threading
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from netemu.cluster import Cluster
from netemu.topology import Node, ServiceRecord


class FakeCluster(Cluster):
    """
    Records every mutating call in `mutations` and keeps objects in dicts.

    Tests drive node lifecycle with set_phase(), which also feeds every active
    watch_node_phases() subscription on that topology. Like a Kubernetes pod
    watch, a new subscription first receives the current phase of each node.
    Errors can be injected per method name through `errors`.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.namespaces: Set[str] = set()
        self.link_specs: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.nodes: Dict[str, Dict[str, Node]] = {}
        self.phases: Dict[Tuple[str, str], str] = {}
        self.services: Dict[Tuple[str, str], List[ServiceRecord]] = {}
        self.configs: Dict[Tuple[str, str], bytes] = {}
        self.mutations: List[Tuple[str, str]] = []
        self.errors: Dict[str, Exception] = {}
        self.active_watches = 0
        self._watchers: Dict[str, List["queue.Queue[Tuple[str, Optional[str]]]"]] = {}

    # -------- test controls --------

    def set_phase(self, topology: str, node_name: str, phase: str) -> None:
        with self._lock:
            self.phases[(topology, node_name)] = phase
            for q in self._watchers.get(topology, []):
                q.put((node_name, phase))

    def set_services(self, topology: str, node_name: str, records: List[ServiceRecord]) -> None:
        with self._lock:
            self.services[(topology, node_name)] = list(records)

    def _call(self, method: str, topology: str) -> None:
        err = self.errors.get(method)
        if err is not None:
            raise err
        self.mutations.append((method, topology))

    # -------- Cluster --------

    def topology_exists(self, topology: str) -> bool:
        with self._lock:
            return topology in self.namespaces

    def create_namespace(self, topology: str) -> None:
        with self._lock:
            self._call("create_namespace", topology)
            self.namespaces.add(topology)

    def delete_namespace(self, topology: str) -> None:
        with self._lock:
            self._call("delete_namespace", topology)
            self.namespaces.discard(topology)
            self.link_specs.pop(topology, None)
            self.nodes.pop(topology, None)

    def create_link_specs(self, topology: str, specs: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._call("create_link_specs", topology)
            bucket = self.link_specs.setdefault(topology, {})
            for spec in specs:
                bucket[spec["metadata"]["name"]] = copy.deepcopy(spec)

    def delete_link_specs(self, topology: str, names: List[str]) -> None:
        with self._lock:
            self._call("delete_link_specs", topology)
            bucket = self.link_specs.get(topology, {})
            for name in names:
                bucket.pop(name, None)

    def list_link_specs(self, topology: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(s) for s in self.link_specs.get(topology, {}).values()]

    def create_node(self, topology: str, node: Node) -> None:
        with self._lock:
            self._call("create_node", topology)
            self.nodes.setdefault(topology, {})[node.name] = copy.deepcopy(node)
        self.set_phase(topology, node.name, "Pending")

    def delete_node(self, topology: str, node_name: str) -> None:
        with self._lock:
            self._call("delete_node", topology)
            self.nodes.get(topology, {}).pop(node_name, None)
            self.phases.pop((topology, node_name), None)
            self.services.pop((topology, node_name), None)

    def node_phase(self, topology: str, node_name: str) -> Optional[str]:
        with self._lock:
            return self.phases.get((topology, node_name))

    def node_services(self, topology: str, node_name: str) -> List[ServiceRecord]:
        with self._lock:
            return copy.deepcopy(self.services.get((topology, node_name), []))

    def watch_node_phases(self, topology: str, cancel: threading.Event) -> Iterator[Tuple[str, Optional[str]]]:
        err = self.errors.get("watch_node_phases")
        if err is not None:
            raise err
        events: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()
        with self._lock:
            for (topo, node_name), phase in self.phases.items():
                if topo == topology:
                    events.put((node_name, phase))
            self._watchers.setdefault(topology, []).append(events)
            self.active_watches += 1
        try:
            while not cancel.is_set():
                try:
                    yield events.get(timeout=0.01)
                except queue.Empty:
                    continue
        finally:
            with self._lock:
                self._watchers[topology].remove(events)
                self.active_watches -= 1

    def exec_config(
        self,
        topology: str,
        node_name: str,
        data: bytes,
        path: str,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        with self._lock:
            self._call("exec_config", topology)
            self.configs[(topology, node_name)] = data
