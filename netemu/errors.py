"""
Error taxonomy for topology lifecycle operations.

Error Hierarchy:
- TopologyError: base for every error raised by netemu itself
  - InvalidTopologyError: spec parsed but violates schema or invariants
  - TopologyExistsError / TopologyNotFoundError: cluster state conflicts
  - ServiceNotFoundError: no live service matches a declared one
  - NodeNotFoundError / NodeNotReadyError / NodeFailedError: per-node issues
  - StatusTimeoutError: node status poll deadline exceeded
  - OperationCancelled: caller set the cancel event

I/O errors (missing spec file) are left as the builtin OSError subclasses and
kubernetes ApiException errors pass through untouched, so callers can tell
the classes apart by type or by message substring.
"""

from __future__ import annotations

from typing import Optional


class TopologyError(Exception):
    """Base class for netemu errors. status_code is used by the REST API."""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class InvalidTopologyError(TopologyError, ValueError):
    """Topology spec is structurally or semantically invalid (400)."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(f"invalid topology: {detail}")


class TopologyExistsError(TopologyError):
    """Topology is already present in the cluster (409)."""
    status_code = 409

    def __init__(self, name: str):
        super().__init__(f"topology {name!r} already exists in cluster")


class TopologyNotFoundError(TopologyError):
    """Topology is absent from the cluster (404)."""
    status_code = 404

    def __init__(self, name: str):
        super().__init__(f"topology {name!r} does not exist in cluster")


class ServiceNotFoundError(TopologyError):
    """No live service record matches a declared service (404)."""
    status_code = 404


class NodeNotFoundError(TopologyError):
    """Node name is not part of the topology (404)."""
    status_code = 404

    def __init__(self, name: str):
        super().__init__(f"node {name!r} not found")


class NodeNotReadyError(TopologyError):
    """Node exists but is not running yet (409)."""
    status_code = 409


class NodeFailedError(TopologyError):
    """A node reported the Failed phase."""


class StatusTimeoutError(TopologyError, TimeoutError):
    """Node status did not converge before the deadline (504)."""
    status_code = 504


class OperationCancelled(TopologyError):
    """Operation stopped because its cancel event was set (499)."""
    status_code = 499
