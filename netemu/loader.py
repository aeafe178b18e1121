"""Load topology specs (*.pb.txt or *.yaml) into the canonical Topology model."""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from google.protobuf import json_format, text_format

from netemu.errors import InvalidTopologyError
from netemu.proto import TopologyMessage
from netemu.topology import Link, Node, ServiceDef, Topology

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def load(path: Union[str, Path]) -> Topology:
    """
    Load a topology spec from disk.

    Files ending in .yaml/.yml are read as YAML, anything else as protobuf
    text format. Both decode through the same schema.

    Raises:
        FileNotFoundError / OSError: path missing or unreadable
        InvalidTopologyError: content violates the schema or topology invariants
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InvalidTopologyError(f"{p}: not valid UTF-8 ({e.reason} at byte {e.start})") from e
    msg = TopologyMessage()

    if p.name.endswith(YAML_SUFFIXES):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise InvalidTopologyError(f"{p}: {e}") from e
        _parse_dict(data, msg, source=str(p))
    else:
        try:
            text_format.Parse(text, msg)
        except text_format.ParseError as e:
            raise InvalidTopologyError(f"{p}: {e}") from e

    topo = _from_message(msg)
    validate(topo)
    logger.debug(f"Loaded topology {topo.name!r} from {p}: {len(topo.nodes)} nodes, {len(topo.links)} links")
    return topo


def parse_topology(data: Any) -> Topology:
    """Build a Topology from already-decoded data (JSON body, YAML document)."""
    msg = TopologyMessage()
    _parse_dict(data, msg, source="document")
    topo = _from_message(msg)
    validate(topo)
    return topo


def topology_to_dict(topo: Topology) -> Dict[str, Any]:
    return asdict(topo)


def validate(topo: Topology) -> None:
    """Check referential invariants the schema alone cannot express."""
    if not topo.name:
        raise InvalidTopologyError("topology name is required")

    names = set()
    for node in topo.nodes:
        if not node.name:
            raise InvalidTopologyError(f"node without a name in topology {topo.name!r}")
        if node.name in names:
            raise InvalidTopologyError(f"duplicate node {node.name!r}")
        names.add(node.name)

    used = set()
    for i, link in enumerate(topo.links):
        for node_name, intf in ((link.a_node, link.a_int), (link.z_node, link.z_int)):
            if node_name not in names:
                raise InvalidTopologyError(f"link {i} references undeclared node {node_name!r}")
            if not intf:
                raise InvalidTopologyError(f"link {i} has no interface on node {node_name!r}")
            if (node_name, intf) in used:
                raise InvalidTopologyError(f"interface {intf!r} on node {node_name!r} is used by more than one link")
            used.add((node_name, intf))


def _parse_dict(data: Any, msg: Any, source: str) -> None:
    if not isinstance(data, dict):
        raise InvalidTopologyError(f"{source}: expected a mapping, got {type(data).__name__}")
    try:
        json_format.ParseDict(data, msg)
    except json_format.ParseError as e:
        raise InvalidTopologyError(f"{source}: {e}") from e


def _from_message(msg: Any) -> Topology:
    nodes = []
    for n in msg.nodes:
        type_value = n.DESCRIPTOR.fields_by_name["type"].enum_type.values_by_number.get(n.type)
        if type_value is None:
            raise InvalidTopologyError(f"node {n.name!r} has unknown type {n.type}")
        services = {
            int(port): ServiceDef(
                name=svc.name,
                inside=svc.inside,
                outside=svc.outside,
                inside_ip=svc.inside_ip,
                outside_ip=svc.outside_ip,
                node_port=svc.node_port,
            )
            for port, svc in sorted(n.services.items())
        }
        nodes.append(Node(name=n.name, type=type_value.name, version=n.version, services=services))

    links = [Link(a_node=l.a_node, a_int=l.a_int, z_node=l.z_node, z_int=l.z_int) for l in msg.links]
    return Topology(name=msg.name, nodes=nodes, links=links)
