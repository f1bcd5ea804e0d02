import threading

import pytest

from buildnest.nodegroup import Node, NodeGroup
from buildnest.platforms import parse
from buildnest.store import Store


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "buildx-store")


def test_empty_startup(store):
    with store.txn() as txn:
        assert txn.current("foo") is None


def test_node_locking(store):
    ready = threading.Event()

    def worker():
        with store.txn() as txn:
            txn.save(NodeGroup(name="locked", driver="d"))
        ready.set()

    with store.txn() as txn:
        thread = threading.Thread(target=worker)
        thread.start()
        assert not ready.wait(0.1), "transaction should have waited"
        assert txn.list() == []

    assert ready.wait(5), "transaction should have completed"
    thread.join()

    with store.txn() as txn:
        assert [g.name for g in txn.list()] == ["locked"]


def test_node_management(store):
    with store.txn() as txn:
        with pytest.raises(ValueError, match="invalid name"):
            txn.save(NodeGroup(name="foo/bar", driver="driver"))

        txn.save(NodeGroup(name="mybuild", driver="mydriver"))
        ng = txn.node_group_by_name("mybuild")
        assert ng.name == "mybuild"
        assert ng.driver == "mydriver"

        with pytest.raises(FileNotFoundError):
            txn.node_group_by_name("mybuild2")

        txn.save(NodeGroup(name="mybuild2", driver="mydriver2"))
        ng = txn.node_group_by_name("mybuild2")
        assert ng.name == "mybuild2"
        assert ng.driver == "mydriver2"

        txn.save(NodeGroup(name="mybuild", driver="mydriver-mod"))
        ng = txn.node_group_by_name("mybuild")
        assert ng.name == "mybuild"
        assert ng.driver == "mydriver-mod"

        assert len(txn.list()) == 2

        txn.set_current("foo", "mybuild", False, False)
        assert txn.current("foo").name == "mybuild"
        assert txn.current("foo").name == "mybuild"
        assert txn.current("bar") is None
        assert txn.current("foo") is None

        txn.set_current("foo", "mybuild", False, True)
        assert txn.current("foo").name == "mybuild"
        assert txn.current("bar") is None
        assert txn.current("foo").name == "mybuild"

        txn.set_current("foo", "mybuild2", False, True)
        assert txn.current("foo").name == "mybuild2"

        txn.set_current("bar", "mybuild", False, False)
        assert txn.current("bar").name == "mybuild"
        assert txn.current("foo").name == "mybuild2"

        txn.set_current("foo", "mybuild2", True, False)
        assert txn.current("foo").name == "mybuild2"
        assert txn.current("bar").name == "mybuild2"

        txn.set_current("bar", "mybuild", False, False)
        assert txn.current("bar").name == "mybuild"
        assert txn.current("foo") is None

        txn.set_current("bar", "mybuild", False, True)
        txn.set_current("foo", "mybuild2", False, False)

        txn.remove("mybuild2")
        with pytest.raises(FileNotFoundError):
            txn.node_group_by_name("mybuild2")

        assert txn.current("foo") is None
        assert txn.current("bar").name == "mybuild"


def test_list_is_sorted(store):
    with store.txn() as txn:
        for name in ("zeta", "alpha", "mid"):
            txn.save(NodeGroup(name=name, driver="d"))
        assert [g.name for g in txn.list()] == ["alpha", "mid", "zeta"]


def test_round_trip_with_nodes(store):
    group = NodeGroup(
        name="full",
        driver="docker-container",
        nodes=[
            Node(
                name="full0",
                endpoint="unix:///var/run/docker.sock",
                platforms=parse(["linux/arm64", "linux/amd64"]),
                flags=["--debug"],
                driver_opts={"image": "img"},
                files={"buildkitd.toml": b"debug = true\n\x00\xff"},
            ),
            Node(name="full1", endpoint="other"),
        ],
    )
    with store.txn() as txn:
        txn.save(group)
        assert txn.node_group_by_name("full") == group


def test_names_are_case_insensitive(store):
    with store.txn() as txn:
        txn.save(NodeGroup(name="MyBuild", driver="d"))
        assert txn.node_group_by_name("MYBUILD").name == "MyBuild"


def test_remove_missing_is_quiet(store):
    with store.txn() as txn:
        txn.remove("ghost")
        assert txn.list() == []


def test_current_falls_back_when_default_deleted(store):
    with store.txn() as txn:
        txn.save(NodeGroup(name="gone", driver="d"))
        txn.set_current("k", "gone", False, True)
        txn.set_current("other", "gone", False, False)
        txn.remove("gone")
        assert txn.current("k") is None