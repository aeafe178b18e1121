"""Create, delete and service-resolution workflows for topologies."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from netemu.cluster import ClusterOptions
from netemu.errors import ServiceNotFoundError
from netemu.loader import load
from netemu.manager import ManagerFactory, TopologyManager, new_topology_manager
from netemu.settings import get_settings
from netemu.topology import Resources, ServicePort, ServiceRecord, Topology

logger = logging.getLogger(__name__)


@dataclass
class TopologyParams:
    topo_name: str = ""  # path to the topology spec
    options: ClusterOptions = field(default_factory=ClusterOptions)
    dry_run: bool = False
    # seconds to wait for nodes after push, 0 = don't wait
    timeout: float = field(default_factory=lambda: get_settings().status_timeout_s)
    manager_factory: ManagerFactory = new_topology_manager


@dataclass
class TopologyResponse:
    topology: Topology
    manager: TopologyManager


def _new_manager(params: TopologyParams) -> TopologyManager:
    topo = load(params.topo_name)
    return params.manager_factory(topo.name, topo, params.options)


def create_topology(params: TopologyParams, cancel: Optional[threading.Event] = None) -> TopologyManager:
    """
    Load the spec and push it to the cluster.

    With dry_run the spec is only loaded and validated; nothing is sent to
    the cluster.
    """
    tm = _new_manager(params)
    tm.load(cancel)
    if params.dry_run:
        logger.info(f"Dry run: topology {params.topo_name} is valid, skipping push")
        return tm

    tm.push(cancel)
    if params.timeout > 0:
        tm.check_node_status(params.timeout, cancel)
    logger.info(f"Created topology from {params.topo_name}")
    return tm


def delete_topology(params: TopologyParams, cancel: Optional[threading.Event] = None) -> None:
    """Delete the topology described by the spec. It must exist in the cluster."""
    tm = _new_manager(params)
    tm.delete(cancel)
    logger.info(f"Deleted topology from {params.topo_name}")


def get_topology_services(params: TopologyParams, cancel: Optional[threading.Event] = None) -> TopologyResponse:
    """Return the topology with service endpoints filled in from the cluster."""
    tm = _new_manager(params)
    tm.load(cancel)
    resources = tm.resources(cancel)
    return TopologyResponse(topology=enrich_services(tm.topology_proto(), resources), manager=tm)


def _find_port(records: List[ServiceRecord], inside: int) -> Optional[Tuple[ServiceRecord, ServicePort]]:
    for record in records:
        for port in record.ports:
            if port.port == inside:
                return record, port
    return None


def enrich_services(topo: Topology, resources: Resources) -> Topology:
    """
    Copy topo and fill inside_ip, node_port and outside_ip of every declared
    service from the matching live service. All-or-nothing: any node or port
    without a live match raises ServiceNotFoundError.
    """
    out = copy.deepcopy(topo)
    for node in out.nodes:
        if not node.services:
            continue
        records = (resources.services or {}).get(node.name) or []
        if not records:
            raise ServiceNotFoundError(f"services for node {node.name!r} not found")

        for key, svc in sorted(node.services.items()):
            match = _find_port(records, svc.inside)
            if match is None:
                raise ServiceNotFoundError(
                    f"service {svc.name!r} on port {svc.inside} (key {key}) for node {node.name!r} not found"
                )
            record, port = match
            svc.inside_ip = record.cluster_ip
            svc.node_port = port.node_port
            svc.outside_ip = record.ingress_ips[0] if record.ingress_ips else ""
    return out
