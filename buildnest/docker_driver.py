"""Driver that uses the BuildKit built into the Docker daemon itself."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from .driver import (
    Driver,
    DriverNotConnecting,
    Factory,
    Feature,
    Info,
    InitConfig,
    Status,
    register,
)

PRIORITY_SUPPORTED = 10
PRIORITY_UNSUPPORTED = 99


class DockerAPI(Protocol):
    """The parts of a Docker Engine client this driver uses."""

    def server_version(self) -> Mapping[str, Any]: ...

    def dial_hijack(self, url: str, proto: str, meta: Mapping[str, list[str]] | None) -> Any: ...


def _not_connecting(exc: Exception) -> DriverNotConnecting:
    return DriverNotConnecting(f"{exc}: driver not connecting")


class DockerDriver(Driver):
    """Builds through the Docker daemon's embedded BuildKit."""

    @property
    def api(self) -> DockerAPI:
        return self.config.docker_api

    def info(self) -> Info:
        try:
            self.api.server_version()
        except Exception as exc:
            raise _not_connecting(exc) from exc
        return Info(Status.RUNNING)

    def version(self) -> str:
        try:
            return str(self.api.server_version()["Version"])
        except Exception as exc:
            raise _not_connecting(exc) from exc

    def client(self) -> Any:
        """Open the daemon's gRPC connection."""
        return self.api.dial_hijack("/grpc", "h2c", None)

    def dial_session(self, proto: str, meta: Mapping[str, list[str]] | None) -> Any:
        """Open a session connection to the daemon."""
        return self.api.dial_hijack("/session", proto, meta)

    def features(self) -> dict[Feature, bool]:
        return {
            Feature.OCI_EXPORTER: False,
            Feature.DOCKER_EXPORTER: False,
            Feature.CACHE_EXPORT: False,
            Feature.MULTI_PLATFORM: False,
        }

    @property
    def is_moby_driver(self) -> bool:
        return True


class DockerFactory(Factory):
    """Creates the driver for the Docker daemon's own BuildKit."""

    name = "docker"
    allows_instances = False

    def priority(self, endpoint: str, api: DockerAPI | None) -> int:
        if api is None:
            return PRIORITY_UNSUPPORTED
        try:
            conn = api.dial_hijack("/grpc", "h2c", None)
        except Exception:
            return PRIORITY_UNSUPPORTED
        conn.close()
        return PRIORITY_SUPPORTED

    def new(self, config: InitConfig) -> DockerDriver:
        if config.docker_api is None:
            raise ValueError("docker driver requires docker API access")
        if config.files:
            raise ValueError(
                "setting config file is not supported for docker driver, "
                "use dockerd configuration file"
            )
        return DockerDriver(self, config)


register(DockerFactory())