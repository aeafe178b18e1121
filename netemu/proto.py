"""Protobuf schema of the topology spec.

The message types are assembled from a FileDescriptorProto at import time so
the text format (*.pb.txt) and the JSON/YAML mapping both go through the
official google.protobuf codecs. Equivalent .proto source:

    message Service  { string name = 1; uint32 inside = 2; uint32 outside = 3;
                       string inside_ip = 4; string outside_ip = 5;
                       uint32 node_port = 6; }
    message Node     { enum Type {...}  string name = 1; Type type = 2;
                       string version = 3; map<uint32, Service> services = 4; }
    message Link     { string a_node = 1; string a_int = 2;
                       string z_node = 3; string z_int = 4; }
    message Topology { string name = 1; repeated Node nodes = 2;
                       repeated Link links = 3; }
"""

from __future__ import annotations

from typing import Optional

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "netemu.topo"

# Node.Type enum; index is the wire number.
NODE_TYPES = (
    "UNKNOWN",
    "HOST",
    "ARISTA_CEOS",
    "CISCO_CSR1000V",
    "CISCO_CXR",
    "CISCO_XRD",
    "JUNIPER_CEVO",
    "JUNIPER_CPTX",
    "JUNIPER_VMX",
    "NOKIA_SRL",
    "IXIA_TG",
    "FRR",
    "QUAGGA",
    "GOBGP",
)

_F = descriptor_pb2.FieldDescriptorProto


def _json_name(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _field(
    msg: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    ftype: int,
    type_name: Optional[str] = None,
    repeated: bool = False,
) -> None:
    f = msg.field.add(
        name=name,
        number=number,
        type=ftype,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
        json_name=_json_name(name),
    )
    if type_name:
        f.type_name = type_name


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="netemu/topo.proto",
        package=PACKAGE,
        syntax="proto3",
    )

    svc = fdp.message_type.add(name="Service")
    _field(svc, "name", 1, _F.TYPE_STRING)
    _field(svc, "inside", 2, _F.TYPE_UINT32)
    _field(svc, "outside", 3, _F.TYPE_UINT32)
    _field(svc, "inside_ip", 4, _F.TYPE_STRING)
    _field(svc, "outside_ip", 5, _F.TYPE_STRING)
    _field(svc, "node_port", 6, _F.TYPE_UINT32)

    node = fdp.message_type.add(name="Node")
    node_type = node.enum_type.add(name="Type")
    for number, name in enumerate(NODE_TYPES):
        node_type.value.add(name=name, number=number)
    entry = node.nested_type.add(name="ServicesEntry")
    entry.options.map_entry = True
    _field(entry, "key", 1, _F.TYPE_UINT32)
    _field(entry, "value", 2, _F.TYPE_MESSAGE, f".{PACKAGE}.Service")
    _field(node, "name", 1, _F.TYPE_STRING)
    _field(node, "type", 2, _F.TYPE_ENUM, f".{PACKAGE}.Node.Type")
    _field(node, "version", 3, _F.TYPE_STRING)
    _field(node, "services", 4, _F.TYPE_MESSAGE, f".{PACKAGE}.Node.ServicesEntry", repeated=True)

    link = fdp.message_type.add(name="Link")
    for number, name in enumerate(("a_node", "a_int", "z_node", "z_int"), start=1):
        _field(link, name, number, _F.TYPE_STRING)

    topo = fdp.message_type.add(name="Topology")
    _field(topo, "name", 1, _F.TYPE_STRING)
    _field(topo, "nodes", 2, _F.TYPE_MESSAGE, f".{PACKAGE}.Node", repeated=True)
    _field(topo, "links", 3, _F.TYPE_MESSAGE, f".{PACKAGE}.Link", repeated=True)
    return fdp


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())

TopologyMessage = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.Topology"))
