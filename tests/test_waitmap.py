import threading
import time

import pytest

from buildnest.waitmap import WaitMap


def test_get_after():
    m = WaitMap()
    m.set("foo", "bar")
    m.set("bar", "baz")

    v = m.get("foo", "bar")
    assert len(v) == 2
    assert v["foo"] == "bar"
    assert v["bar"] == "baz"

    v = m.get("foo")
    assert len(v) == 1
    assert v["foo"] == "bar"


def test_get_no_keys():
    assert WaitMap().get() == {}


def test_timeout():
    m = WaitMap()
    m.set("foo", "bar")
    with pytest.raises(TimeoutError):
        m.get("bar", timeout=0.1)


def test_blocking():
    m = WaitMap()
    m.set("foo", "bar")

    def later():
        time.sleep(0.1)
        m.set("bar", "baz")
        time.sleep(0.05)
        m.set("baz", "abc")

    thread = threading.Thread(target=later)
    thread.start()
    try:
        v = m.get("foo", "bar", "baz")
    finally:
        thread.join()
    assert len(v) == 3
    assert v["foo"] == "bar"
    assert v["bar"] == "baz"
    assert v["baz"] == "abc"