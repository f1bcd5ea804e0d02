"""Build drivers: the driver interface, the factory registry and booting a driver."""

from __future__ import annotations

import enum
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from .nodegroup import Node
from .platforms import Platform

DEFAULT_IMAGE = "moby/buildkit:buildx-stable-1"
QEMU_IMAGE = "tonistiigi/binfmt:latest"
DEFAULT_ROOTLESS_IMAGE = DEFAULT_IMAGE + "-rootless"

Logger = Callable[[Any], None]


class DriverError(Exception):
    """Base class for driver failures."""


class DriverNotRunning(DriverError):
    """The driver's daemon is not running."""

    def __init__(self, message: str = "driver not running") -> None:
        super().__init__(message)


class DriverNotConnecting(DriverError):
    """The driver's daemon cannot be reached."""

    def __init__(self, message: str = "driver not connecting") -> None:
        super().__init__(message)


class Status(enum.Enum):
    """Lifecycle state of a driver's daemon."""

    INACTIVE = 0
    STARTING = 1
    RUNNING = 2
    STOPPING = 3
    STOPPED = 4

    def __str__(self) -> str:
        return self.name.lower()


class Feature(str, enum.Enum):
    """Capabilities a driver may support."""

    OCI_EXPORTER = "OCI exporter"
    DOCKER_EXPORTER = "Docker exporter"
    CACHE_EXPORT = "cache export"
    MULTI_PLATFORM = "multiple platforms"

    def __str__(self) -> str:
        return self.value


@dataclass
class Info:
    """Driver state; dynamic nodes are only set when nodes are not listed in the store."""

    status: Status
    dynamic_nodes: list[Node] = field(default_factory=list)


@dataclass
class InitConfig:
    """Everything a factory needs to create a driver."""

    name: str = ""
    endpoint_addr: str = ""
    docker_api: Any = None
    kube_client_config: Any = None
    buildkit_flags: list[str] | None = None
    files: dict[str, bytes] | None = None
    driver_opts: dict[str, str] | None = None
    auth: Any = None
    platforms: list[Platform] | None = None
    context_path_hash: str = ""


class Driver(ABC):
    """A way of running and reaching a BuildKit daemon."""

    def __init__(self, factory: Factory | None, config: InitConfig) -> None:
        self.factory = factory
        self.config = config

    def bootstrap(self, logger: Logger) -> None:
        """Start the daemon; drivers that need no start-up do nothing."""

    @abstractmethod
    def info(self) -> Info:
        """Report the daemon's state."""

    def version(self) -> str:
        """Return the daemon's version, or an empty string if unknown."""
        return ""

    def stop(self, force: bool) -> None:
        """Stop the daemon; drivers that cannot stop it do nothing."""

    def rm(self, force: bool, rm_volume: bool, rm_daemon: bool) -> None:
        """Remove the daemon; drivers that cannot remove it do nothing."""

    @abstractmethod
    def client(self) -> Any:
        """Open a connection to the daemon."""

    @abstractmethod
    def features(self) -> dict[Feature, bool]:
        """Report which features the driver supports."""

    @property
    def is_moby_driver(self) -> bool:
        return False


class Factory(ABC):
    """Creates drivers of one kind."""

    name: str = ""
    allows_instances: bool = True

    @property
    def usage(self) -> str:
        return self.name

    @abstractmethod
    def priority(self, endpoint: str, api: Any) -> int:
        """Lower values are preferred when choosing a default driver."""

    @abstractmethod
    def new(self, config: InitConfig) -> Driver:
        """Create a driver from the configuration."""


class CachedDriver(Driver):
    """Wraps a driver so that its client is created only once."""

    def __init__(self, driver: Driver) -> None:
        super().__init__(driver.factory, driver.config)
        self.driver = driver
        self._lock = threading.Lock()
        self._resolved = False
        self._client: Any = None
        self._error: BaseException | None = None

    def bootstrap(self, logger: Logger) -> None:
        self.driver.bootstrap(logger)

    def info(self) -> Info:
        return self.driver.info()

    def version(self) -> str:
        return self.driver.version()

    def stop(self, force: bool) -> None:
        self.driver.stop(force)

    def rm(self, force: bool, rm_volume: bool, rm_daemon: bool) -> None:
        self.driver.rm(force, rm_volume, rm_daemon)

    def features(self) -> dict[Feature, bool]:
        return self.driver.features()

    @property
    def is_moby_driver(self) -> bool:
        return self.driver.is_moby_driver

    def client(self) -> Any:
        """Return the wrapped driver's client, or re-raise its first failure."""
        with self._lock:
            if not self._resolved:
                try:
                    self._client = self.driver.client()
                except Exception as exc:
                    self._error = exc
                self._resolved = True
        if self._error is not None:
            raise self._error
        return self._client


_drivers: dict[str, Factory] = {}


def register(factory: Factory) -> None:
    """Make a factory available under its name."""
    _drivers[factory.name] = factory


def get_default_factory(endpoint: str, api: Any, instance_required: bool) -> Factory:
    """Return the registered factory with the lowest priority for the endpoint."""
    if not _drivers:
        raise LookupError("no drivers available")
    candidates = [
        (f.priority(endpoint, api), f)
        for f in _drivers.values()
        if not instance_required or f.allows_instances
    ]
    if not candidates:
        raise LookupError("no drivers available")
    return min(candidates, key=lambda c: c[0])[1]


def get_factory(name: str, instance_required: bool) -> Factory | None:
    """Return the factory with the given name, or None."""
    factory = _drivers.get(name)
    if factory is None or (instance_required and not factory.allows_instances):
        return None
    return factory


def get_factories() -> list[Factory]:
    """Return every registered factory, sorted by name."""
    return sorted(_drivers.values(), key=lambda f: f.name)


def get_driver(
    name: str,
    factory: Factory | None,
    endpoint_addr: str,
    api: Any,
    auth: Any,
    kube_config: Any,
    flags: list[str] | None,
    files: dict[str, bytes] | None,
    driver_opts: dict[str, str] | None,
    platforms: list[Platform] | None,
    context_path_hash: str,
) -> CachedDriver:
    """Create a driver, choosing the default factory when none is given."""
    config = InitConfig(
        name=name,
        endpoint_addr=endpoint_addr,
        docker_api=api,
        kube_client_config=kube_config,
        buildkit_flags=flags,
        files=files,
        driver_opts=driver_opts,
        auth=auth,
        platforms=platforms,
        context_path_hash=context_path_hash,
    )
    if factory is None:
        factory = get_default_factory(endpoint_addr, api, False)
    return CachedDriver(factory.new(config))


def boot(driver: Driver, logger: Logger) -> Any:
    """Bootstrap the driver if needed and return its client, retrying briefly."""
    attempts = 0
    while True:
        info = driver.info()
        attempts += 1
        if info.status != Status.RUNNING:
            if attempts > 2:
                raise DriverError(
                    f"failed to bootstrap {type(driver).__name__} driver in attempts"
                )
            driver.bootstrap(logger)
        try:
            return driver.client()
        except DriverNotRunning:
            if attempts <= 2:
                continue
            raise