import pytest

from netemu.errors import InvalidTopologyError
from netemu.loader import load, parse_topology, topology_to_dict
from netemu.topology import Link, Node, ServiceDef, Topology


def test_load_pb_and_yaml_are_equal(testdata):
    pb = load(testdata / "valid_topo.pb.txt")
    yml = load(testdata / "valid_topo.yaml")
    assert pb == yml

    assert pb.name == "test-data-topology"
    assert [n.name for n in pb.nodes] == ["r1", "otg"]
    assert pb.node("r1").type == "ARISTA_CEOS"
    assert pb.node("r1").services == {1002: ServiceDef(name="ssh", inside=1002, outside=22)}
    assert pb.node("otg").version == "0.0.1-9999"
    assert sorted(pb.node("otg").services) == [40051, 50051]
    assert pb.links == [Link(a_node="r1", a_int="eth9", z_node="otg", z_int="eth1")]


@pytest.mark.parametrize("fname", ["invalid_topo.pb.txt", "invalid_topo.yaml", "dangling_link.pb.txt"])
def test_load_invalid(testdata, fname):
    with pytest.raises(InvalidTopologyError, match="invalid topology"):
        load(testdata / fname)


def test_load_tab_indented_yaml(tmp_path):
    path = tmp_path / "invalid.yaml"
    path.write_text("\n\tname: 2node-ixia\n\tnodes:\n\t  - name: ixia-c-port1\n")
    with pytest.raises(InvalidTopologyError, match="invalid topology"):
        load(path)


def test_load_non_utf8_file(tmp_path):
    path = tmp_path / "latin1.pb.txt"
    path.write_bytes(b"name: \"caf\xe9\"\n")
    with pytest.raises(InvalidTopologyError, match="not valid UTF-8"):
        load(path)


def test_load_missing_file_is_io_error(testdata):
    with pytest.raises(FileNotFoundError, match="No such file or directory") as exc:
        load(testdata / "non_existing.pb.txt")
    assert not isinstance(exc.value, InvalidTopologyError)


def test_parse_topology_rejects_non_mapping():
    with pytest.raises(InvalidTopologyError, match="expected a mapping"):
        parse_topology(["not", "a", "topology"])


@pytest.mark.parametrize(
    "data, detail",
    [
        ({"nodes": [{"name": "r1"}]}, "name is required"),
        ({"name": "t", "nodes": [{"name": "r1"}, {"name": "r1"}]}, "duplicate node"),
        ({"name": "t", "nodes": [{"name": "r1", "type": "NOT_A_VENDOR"}]}, "invalid topology"),
        (
            {
                "name": "t",
                "nodes": [{"name": "r1"}, {"name": "r2"}, {"name": "r3"}],
                "links": [
                    {"a_node": "r1", "a_int": "eth1", "z_node": "r2", "z_int": "eth1"},
                    {"a_node": "r1", "a_int": "eth1", "z_node": "r3", "z_int": "eth1"},
                ],
            },
            "used by more than one link",
        ),
        (
            {"name": "t", "nodes": [{"name": "r1"}, {"name": "r2"}], "links": [{"a_node": "r1", "z_node": "r2"}]},
            "no interface",
        ),
    ],
)
def test_parse_topology_validation(data, detail):
    with pytest.raises(InvalidTopologyError, match=detail):
        parse_topology(data)


def test_parse_topology_accepts_json_names():
    topo = parse_topology({
        "name": "t",
        "nodes": [{"name": "h1", "type": "HOST", "services": {"22": {"name": "ssh", "inside": 22, "nodePort": 30022}}}],
    })
    assert topo == Topology(
        name="t",
        nodes=[Node(name="h1", type="HOST", services={22: ServiceDef(name="ssh", inside=22, node_port=30022)})],
    )


def test_topology_to_dict(testdata):
    data = topology_to_dict(load(testdata / "valid_topo.pb.txt"))
    assert data["name"] == "test-data-topology"
    assert data["nodes"][0]["services"][1002]["name"] == "ssh"
    assert data["links"][0] == {"a_node": "r1", "a_int": "eth9", "z_node": "otg", "z_int": "eth1"}
