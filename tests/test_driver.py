import pytest

from buildnest import driver as drv
from buildnest.driver import (
    CachedDriver,
    Driver,
    DriverError,
    DriverNotConnecting,
    DriverNotRunning,
    Factory,
    Feature,
    Info,
    InitConfig,
    Status,
    boot,
    get_default_factory,
    get_driver,
    get_factories,
    get_factory,
    register,
)


class FakeDriver(Driver):
    def __init__(self, statuses, client_results, factory=None, config=None):
        super().__init__(factory, config or InitConfig(name="fake"))
        self.statuses = list(statuses)
        self.client_results = list(client_results)
        self.bootstraps = 0
        self.client_calls = 0

    def info(self):
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return Info(status)

    def bootstrap(self, logger):
        self.bootstraps += 1

    def client(self):
        self.client_calls += 1
        result = self.client_results.pop(0) if len(self.client_results) > 1 else self.client_results[0]
        if isinstance(result, Exception):
            raise result
        return result

    def features(self):
        return {Feature.CACHE_EXPORT: True}


class FakeFactory(Factory):
    def __init__(self, name, prio, allows=True):
        self.name = name
        self.prio = prio
        self.allows_instances = allows
        self.created = None

    def priority(self, endpoint, api):
        return self.prio

    def new(self, config):
        self.created = config
        return FakeDriver([Status.RUNNING], ["conn"], self, config)


@pytest.fixture(autouse=True)
def empty_registry(monkeypatch):
    monkeypatch.setattr(drv, "_drivers", {})


def test_error_messages():
    assert str(DriverNotRunning()) == "driver not running"
    assert str(DriverNotConnecting()) == "driver not connecting"


def test_boot_running_returns_client_without_bootstrap():
    d = FakeDriver([Status.RUNNING], ["conn"])
    assert boot(d, lambda s: None) == "conn"
    assert d.bootstraps == 0


def test_boot_bootstraps_inactive_driver():
    d = FakeDriver([Status.INACTIVE, Status.RUNNING], ["conn"])
    assert boot(d, lambda s: None) == "conn"
    assert d.bootstraps == 1


def test_boot_retries_when_not_running():
    d = FakeDriver([Status.INACTIVE], [DriverNotRunning(), "conn"])
    assert boot(d, lambda s: None) == "conn"
    assert d.bootstraps == 2
    assert d.client_calls == 2


def test_boot_gives_up_after_attempts():
    d = FakeDriver([Status.INACTIVE], [DriverNotRunning()])
    with pytest.raises(DriverError, match="failed to bootstrap FakeDriver driver"):
        boot(d, lambda s: None)
    assert d.bootstraps == 2


def test_boot_propagates_other_client_errors():
    d = FakeDriver([Status.RUNNING], [ValueError("broken")])
    with pytest.raises(ValueError, match="broken"):
        boot(d, lambda s: None)
    assert d.client_calls == 1


def test_cached_driver_calls_client_once():
    inner = FakeDriver([Status.RUNNING], ["conn"])
    cached = CachedDriver(inner)
    assert cached.client() == "conn"
    assert cached.client() == "conn"
    assert inner.client_calls == 1


def test_cached_driver_caches_error():
    inner = FakeDriver([Status.RUNNING], [DriverNotRunning(), "conn"])
    cached = CachedDriver(inner)
    for _ in range(2):
        with pytest.raises(DriverNotRunning):
            cached.client()
    assert inner.client_calls == 1


def test_cached_driver_delegates():
    inner = FakeDriver([Status.STOPPED], ["conn"])
    cached = CachedDriver(inner)
    status = cached.info().status
    assert status == Status.STOPPED
    assert str(status) == "stopped"
    assert cached.features() == {Feature.CACHE_EXPORT: True}
    assert cached.is_moby_driver is False


def test_cached_driver_status_strings():
    for status, text in ((Status.RUNNING, "running"), (Status.INACTIVE, "inactive")):
        cached = CachedDriver(FakeDriver([status], ["conn"]))
        assert str(cached.info().status) == text


def test_default_factory_prefers_lowest_priority():
    register(FakeFactory("b", 30))
    register(FakeFactory("a", 10, allows=False))
    assert get_default_factory("", None, False).name == "a"
    assert get_default_factory("", None, True).name == "b"


def test_default_factory_without_drivers():
    with pytest.raises(LookupError, match="no drivers available"):
        get_default_factory("", None, False)


def test_get_factory_respects_instances():
    register(FakeFactory("solo", 10, allows=False))
    assert get_factory("solo", False).name == "solo"
    assert get_factory("solo", True) is None
    assert get_factory("missing", False) is None


def test_get_factories_sorted_by_name():
    for name in ("zeta", "alpha", "mid"):
        register(FakeFactory(name, 1))
    assert [f.name for f in get_factories()] == ["alpha", "mid", "zeta"]


def test_get_driver_builds_config_and_caches():
    factory = FakeFactory("x", 5)
    d = get_driver("builder0", factory, "tcp://h:1", None, None, None, ["--debug"], {}, {"k": "v"}, None, "hash")
    assert isinstance(d, CachedDriver)
    assert factory.created.name == "builder0"
    assert factory.created.endpoint_addr == "tcp://h:1"
    assert factory.created.buildkit_flags == ["--debug"]
    assert factory.created.driver_opts == {"k": "v"}
    assert factory.created.context_path_hash == "hash"
    assert d.client() == "conn"
    assert [feature.value for feature in d.features()] == ["cache export"]


def test_get_driver_uses_default_factory():
    register(FakeFactory("slow", 50))
    fast = FakeFactory("fast", 5)
    register(fast)
    d = get_driver("b", None, "", None, None, None, None, None, None, None, "")
    assert d.factory is fast