from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass
class ServiceDef:
    name: str = ""
    inside: int = 0
    outside: int = 0
    inside_ip: str = ""
    outside_ip: str = ""
    node_port: int = 0


@dataclass
class Node:
    name: str
    type: str = "UNKNOWN"  # vendor/type tag, e.g. ARISTA_CEOS | IXIA_TG | HOST
    version: str = ""
    services: Dict[int, ServiceDef] = field(default_factory=dict)


@dataclass
class Link:
    a_node: str
    a_int: str
    z_node: str
    z_int: str


@dataclass
class Topology:
    name: str
    nodes: List[Node] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)

    def node(self, name: str) -> Optional[Node]:
        for n in self.nodes:
            if n.name == name:
                return n
        return None


@dataclass
class ServicePort:
    port: int
    node_port: int = 0
    name: str = ""
    target_port: int = 0


@dataclass
class ServiceRecord:
    """One live cluster service backing a node."""
    cluster_ip: str
    ports: List[ServicePort] = field(default_factory=list)
    ingress_ips: List[str] = field(default_factory=list)


@dataclass
class Resources:
    """Live service records keyed by node name. Built fresh per query."""
    services: Dict[str, List[ServiceRecord]] = field(default_factory=dict)


class NodeStatus(Enum):
    UNSPECIFIED = "unspecified"
    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_phase(cls, phase: Optional[str]) -> "NodeStatus":
        """Map a pod phase (Pending, Running, Failed, ...) to a node status."""
        return _PHASES.get(phase or "", cls.UNKNOWN)


_PHASES = {
    "Pending": NodeStatus.PENDING,
    "Running": NodeStatus.RUNNING,
    "Failed": NodeStatus.FAILED,
}


class TopoState(Enum):
    UNSPECIFIED = "unspecified"
    CREATING = "creating"
    RUNNING = "running"
    ERROR = "error"
