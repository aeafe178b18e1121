"""Generate Kubernetes V1Pod and V1Service objects for topology nodes."""

from __future__ import annotations

from typing import Dict, Optional

from kubernetes.client import (
    V1Container,
    V1ContainerPort,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
)

from netemu.topology import Node

# Default image per node type; vendor-specific boot config is out of scope.
_IMAGES = {
    "HOST": "alpine:latest",
    "ARISTA_CEOS": "ceos:latest",
    "NOKIA_SRL": "ghcr.io/nokia/srlinux:latest",
    "IXIA_TG": "ghcr.io/open-traffic-generator/ixia-c-traffic-engine:latest",
    "FRR": "frrouting/frr:latest",
    "GOBGP": "jauderho/gobgp:latest",
}


def _get_image_for_type(node_type: str, version: str, default_image: str) -> str:
    """Map node type to container image, pinning the tag to the node version."""
    image = _IMAGES.get(node_type, default_image)
    if version:
        repo = image.rsplit(":", 1)[0] if ":" in image.rsplit("/", 1)[-1] else image
        image = f"{repo}:{version}"
    return image


def node_labels(topology: str, node: Node) -> Dict[str, str]:
    return {
        "app": node.name,
        "topo": topology,
        "netemu.type": node.type.lower(),
    }


def generate_pod_for_node(topology: str, node: Node, default_image: str = "alpine:latest") -> V1Pod:
    """
    Generate a V1Pod for one topology node.

    Args:
        topology: Topology name, also used as the namespace
        node: Node declaration
        default_image: Image for node types without a known image

    Returns:
        V1Pod object ready for creation
    """
    ports = [
        V1ContainerPort(container_port=svc.inside, name=(svc.name or None), protocol="TCP")
        for svc in node.services.values()
        if svc.inside
    ]
    container = V1Container(
        name=node.name,
        image=_get_image_for_type(node.type, node.version, default_image),
        image_pull_policy="IfNotPresent",
        ports=ports or None,
    )
    if node.type in ("HOST", "UNKNOWN"):
        # Plain hosts have no init process of their own
        container.command = ["/bin/sh", "-c", "sleep infinity"]

    return V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=V1ObjectMeta(
            name=node.name,
            namespace=topology,
            labels=node_labels(topology, node),
        ),
        spec=V1PodSpec(
            containers=[container],
            restart_policy="Always",
        ),
    )


def generate_service_for_node(topology: str, node: Node) -> Optional[V1Service]:
    """Generate a LoadBalancer service exposing the node's declared ports, if any."""
    if not node.services:
        return None

    ports = [
        V1ServicePort(
            name=svc.name or f"port-{port}",
            port=svc.inside or port,
            target_port=svc.inside or port,
            protocol="TCP",
        )
        for port, svc in sorted(node.services.items())
    ]
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=f"service-{node.name}",
            namespace=topology,
            labels=node_labels(topology, node),
        ),
        spec=V1ServiceSpec(
            type="LoadBalancer",
            selector={"app": node.name},
            ports=ports,
        ),
    )
