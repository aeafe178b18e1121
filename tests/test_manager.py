import io
import threading
import time

import pytest

from netemu.errors import (
    NodeFailedError,
    NodeNotFoundError,
    NodeNotReadyError,
    OperationCancelled,
    StatusTimeoutError,
    TopologyExistsError,
    TopologyNotFoundError,
)
from netemu.loader import load
from netemu.manager import KubeTopologyManager, new_topology_manager
from netemu.topology import NodeStatus, ServicePort, ServiceRecord, TopoState


@pytest.fixture
def topo(testdata):
    return load(testdata / "valid_topo.pb.txt")


@pytest.fixture
def manager(topo, options, fast_settings):
    tm = KubeTopologyManager(topo.name, topo, options, settings=fast_settings)
    tm.load()
    return tm


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_load_builds_link_specs(manager):
    specs = {s["metadata"]["name"]: s for s in manager.topology_specs()}
    assert sorted(specs) == ["otg", "r1"]
    assert specs["r1"]["metadata"]["namespace"] == "test-data-topology"
    assert specs["r1"]["spec"]["links"] == [{
        "uid": 0,
        "peer_pod": "otg",
        "local_intf": "eth9",
        "peer_intf": "eth1",
        "local_ip": "",
        "peer_ip": "",
    }]
    assert specs["otg"]["spec"]["links"][0]["peer_pod"] == "r1"
    assert specs["otg"]["spec"]["links"][0]["local_intf"] == "eth1"


def test_load_does_no_cluster_io(topo, options, fake_cluster):
    tm = new_topology_manager(topo.name, topo, options)
    tm.load()
    tm.load()
    assert fake_cluster.mutations == []
    assert [n.name for n in tm.nodes()] == ["r1", "otg"]


def test_push_then_delete(manager, fake_cluster):
    manager.push()
    assert fake_cluster.topology_exists("test-data-topology")
    assert sorted(fake_cluster.nodes["test-data-topology"]) == ["otg", "r1"]
    assert [t["metadata"]["name"] for t in manager.topology_resources()] == ["otg", "r1"]
    assert len(manager.topology()) == 2

    manager.delete()
    assert not fake_cluster.topology_exists("test-data-topology")
    assert manager.topology() == []


def test_push_existing_topology_fails(manager, fake_cluster):
    fake_cluster.create_namespace("test-data-topology")
    fake_cluster.mutations.clear()
    with pytest.raises(TopologyExistsError, match="already exists in cluster"):
        manager.push()
    assert fake_cluster.mutations == []


def test_push_surfaces_partial_failure(manager, fake_cluster):
    fake_cluster.errors["create_node"] = RuntimeError("pod quota exceeded")
    with pytest.raises(RuntimeError, match="pod quota exceeded"):
        manager.push()
    # No rollback: what was created stays in place
    assert fake_cluster.topology_exists("test-data-topology")
    assert fake_cluster.link_specs["test-data-topology"]


def test_delete_absent_topology_fails(manager, fake_cluster):
    with pytest.raises(TopologyNotFoundError, match="does not exist in cluster"):
        manager.delete()
    assert fake_cluster.mutations == []


def test_push_cancelled(manager, fake_cluster):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        manager.push(cancel)
    assert fake_cluster.mutations == []


def test_check_node_status_running(manager, fake_cluster):
    manager.push()
    fake_cluster.set_phase("test-data-topology", "r1", "Running")
    fake_cluster.set_phase("test-data-topology", "otg", "Running")
    manager.check_node_status(timeout=1.0)


def test_check_node_status_failed_short_circuits(manager, fake_cluster):
    manager.push()
    fake_cluster.set_phase("test-data-topology", "otg", "Failed")
    start = time.monotonic()
    with pytest.raises(NodeFailedError, match="otg"):
        manager.check_node_status(timeout=30.0)
    assert time.monotonic() - start < 5.0


def test_check_node_status_timeout(manager, fake_cluster):
    manager.push()
    fake_cluster.set_phase("test-data-topology", "r1", "Running")
    with pytest.raises(StatusTimeoutError, match="otg"):
        manager.check_node_status(timeout=0.05)


def test_check_node_status_becomes_running(manager, fake_cluster):
    manager.push()
    fake_cluster.set_phase("test-data-topology", "r1", "Running")
    timer = threading.Timer(0.05, fake_cluster.set_phase, args=("test-data-topology", "otg", "Running"))
    timer.start()
    try:
        manager.check_node_status(timeout=2.0)
    finally:
        timer.cancel()


def test_check_node_status_cancelled(manager, fake_cluster):
    manager.push()
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()
    with pytest.raises(OperationCancelled):
        manager.check_node_status(timeout=5.0, cancel=cancel)


def test_watch_updates_state_and_stops_cleanly(manager, fake_cluster):
    cancel = threading.Event()
    errors = []

    def run():
        try:
            manager.watch(cancel)
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert wait_for(lambda: fake_cluster.active_watches == 1)

    manager.push()
    assert wait_for(lambda: manager.topo_state() == TopoState.CREATING)

    fake_cluster.set_phase("test-data-topology", "r1", "Running")
    fake_cluster.set_phase("test-data-topology", "otg", "Running")
    assert wait_for(lambda: manager.topo_state() == TopoState.RUNNING)

    fake_cluster.set_phase("test-data-topology", "otg", "Failed")
    assert wait_for(lambda: manager.topo_state() == TopoState.ERROR)
    assert manager.state_map.node_state("otg") == NodeStatus.FAILED

    cancel.set()
    thread.join(timeout=2.0)
    assert not thread.is_alive()
    assert errors == []
    assert fake_cluster.active_watches == 0


def test_watch_ignores_unknown_pods(manager, fake_cluster):
    cancel = threading.Event()
    thread = threading.Thread(target=manager.watch, args=(cancel,), daemon=True)
    thread.start()
    fake_cluster.set_phase("test-data-topology", "stray-pod", "Failed")
    fake_cluster.set_phase("test-data-topology", "r1", "Running")
    assert wait_for(lambda: manager.state_map.node_state("r1") == NodeStatus.RUNNING)
    assert manager.state_map.node_state("stray-pod") == NodeStatus.UNSPECIFIED
    cancel.set()
    thread.join(timeout=2.0)


def test_watch_error_releases_subscription(manager, fake_cluster):
    fake_cluster.errors["watch_node_phases"] = RuntimeError("watch refused")
    with pytest.raises(RuntimeError, match="watch refused"):
        manager.watch(threading.Event())
    assert fake_cluster.active_watches == 0


def test_config_push(manager, fake_cluster):
    manager.push()
    with pytest.raises(NodeNotFoundError, match="not found"):
        manager.config_push("r9", io.BytesIO(b"hostname r9"))
    with pytest.raises(NodeNotReadyError, match="not running"):
        manager.config_push("r1", io.BytesIO(b"hostname r1"))

    fake_cluster.set_phase("test-data-topology", "r1", "Running")
    manager.config_push("r1", io.StringIO("hostname r1\n"))
    assert fake_cluster.configs[("test-data-topology", "r1")] == b"hostname r1\n"


def test_resources_is_fresh_read(manager, fake_cluster):
    assert manager.resources().services == {}
    record = ServiceRecord(cluster_ip="1.1.1.2", ports=[ServicePort(port=1002, node_port=22, name="ssh")])
    fake_cluster.set_services("test-data-topology", "r1", [record])
    assert manager.resources().services == {"r1": [record]}


def test_node_accessor(manager):
    assert manager.node("r1").type == "ARISTA_CEOS"
    with pytest.raises(NodeNotFoundError):
        manager.node("nope")
    assert manager.topology_proto().name == "test-data-topology"


def test_watches_on_two_topologies_see_their_own_events(fake_cluster):
    cancel = threading.Event()
    seen = {"a": [], "b": []}

    def run(topology):
        for event in fake_cluster.watch_node_phases(topology, cancel):
            seen[topology].append(event)

    first = threading.Thread(target=run, args=("a",), daemon=True)
    first.start()
    assert wait_for(lambda: fake_cluster.active_watches == 1)

    fake_cluster.set_phase("b", "n1", "Running")
    second = threading.Thread(target=run, args=("b",), daemon=True)
    second.start()
    assert wait_for(lambda: fake_cluster.active_watches == 2)
    fake_cluster.set_phase("a", "n1", "Pending")
    fake_cluster.set_phase("b", "n2", "Failed")

    assert wait_for(lambda: len(seen["b"]) == 2 and len(seen["a"]) == 1)
    cancel.set()
    first.join(timeout=2.0)
    second.join(timeout=2.0)
    assert seen == {"a": [("n1", "Pending")], "b": [("n1", "Running"), ("n2", "Failed")]}
    assert fake_cluster.active_watches == 0
