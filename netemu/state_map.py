"""Per-node status registry with a derived topology-wide state."""

from __future__ import annotations

import threading
from typing import Dict, Iterable

from netemu.topology import NodeStatus, TopoState


def aggregate(statuses: Iterable[NodeStatus]) -> TopoState:
    """
    Reduce node statuses to one TopoState.

    Precedence: no nodes -> UNSPECIFIED, any FAILED -> ERROR,
    any PENDING/UNKNOWN -> CREATING, all RUNNING -> RUNNING,
    anything else (a node still UNSPECIFIED) -> UNSPECIFIED.
    """
    seen = set(statuses)
    if not seen:
        return TopoState.UNSPECIFIED
    if NodeStatus.FAILED in seen:
        return TopoState.ERROR
    if NodeStatus.PENDING in seen or NodeStatus.UNKNOWN in seen:
        return TopoState.CREATING
    if seen == {NodeStatus.RUNNING}:
        return TopoState.RUNNING
    return TopoState.UNSPECIFIED


class StateMap:
    """Thread-safe map of node name -> NodeStatus.

    The aggregate is never stored; every topo_state() call recomputes it from
    a snapshot taken under the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, NodeStatus] = {}

    def set_node_state(self, name: str, status: NodeStatus) -> None:
        with self._lock:
            self._nodes[name] = status

    def node_state(self, name: str) -> NodeStatus:
        with self._lock:
            return self._nodes.get(name, NodeStatus.UNSPECIFIED)

    def snapshot(self) -> Dict[str, NodeStatus]:
        with self._lock:
            return dict(self._nodes)

    def topo_state(self) -> TopoState:
        return aggregate(self.snapshot().values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)
