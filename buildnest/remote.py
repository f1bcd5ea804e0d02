"""Driver for a BuildKit daemon that is already running at a known address."""

from __future__ import annotations

import os
import socket
import ssl
import time
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import SplitResult, urlsplit

from .driver import (
    Driver,
    DriverNotConnecting,
    Factory,
    Feature,
    Info,
    InitConfig,
    Logger,
    Status,
    register,
)

PRIORITY_SUPPORTED = 20
PRIORITY_UNSUPPORTED = 90

_SCHEMES = frozenset({"tcp", "unix", "ssh", "docker-container", "kube-pod"})
_TLS_FILE_OPTIONS = {"cacert": "ca_cert", "cert": "cert", "key": "key"}
_DIAL_TIMEOUT = 10.0


def _check_endpoint(endpoint: str) -> SplitResult:
    try:
        parsed = urlsplit(endpoint)
    except ValueError as exc:
        raise ValueError(f"failed to parse endpoint {endpoint}: {exc}") from exc
    if parsed.scheme not in _SCHEMES:
        raise ValueError(f"unrecognized url scheme {parsed.scheme}")
    return parsed


def is_valid_endpoint(endpoint: str) -> bool:
    """Tell whether the endpoint uses a scheme the remote driver understands."""
    try:
        _check_endpoint(endpoint)
    except ValueError:
        return False
    return True


@dataclass
class TLSOptions:
    """Client TLS settings for reaching the daemon."""

    server_name: str = ""
    ca_cert: str = ""
    cert: str = ""
    key: str = ""


class RemoteDriver(Driver):
    """Connects to an externally managed BuildKit daemon."""

    def __init__(self, factory: Factory, config: InitConfig, tls: TLSOptions | None = None) -> None:
        super().__init__(factory, config)
        self.tls = tls

    def bootstrap(self, logger: Logger) -> None:
        """Wait until the daemon answers, backing off up to ten seconds between tries."""
        attempt = 0
        while self.info().status == Status.INACTIVE:
            time.sleep(min(attempt, 10))
            attempt += 1

    def info(self) -> Info:
        try:
            conn = self.client()
        except (OSError, ValueError, DriverNotConnecting):
            return Info(Status.INACTIVE)
        conn.close()
        return Info(Status.RUNNING)

    def _dial(self, parsed: SplitResult) -> socket.socket:
        address = self.config.endpoint_addr
        if parsed.scheme == "tcp":
            if parsed.hostname is None or parsed.port is None:
                raise ValueError(f"invalid tcp endpoint {address}")
            sock = socket.create_connection((parsed.hostname, parsed.port), timeout=_DIAL_TIMEOUT)
            sock.settimeout(None)
            return sock
        if parsed.scheme == "unix":
            family = getattr(socket, "AF_UNIX", None)
            if family is None:
                raise DriverNotConnecting("unix sockets are not available on this platform")
            sock = socket.socket(family, socket.SOCK_STREAM)
            try:
                sock.connect(parsed.netloc + parsed.path)
            except OSError:
                sock.close()
                raise
            return sock
        raise DriverNotConnecting(
            f"{parsed.scheme} endpoints need a connection helper and cannot be dialed directly"
        )

    def _tls_context(self, tls: TLSOptions) -> ssl.SSLContext:
        context = ssl.create_default_context(cafile=tls.ca_cert or None)
        context.load_cert_chain(tls.cert, tls.key)
        if not tls.server_name:
            context.check_hostname = False
        return context

    def client(self) -> socket.socket:
        """Open a connection to the daemon, wrapped in TLS when configured."""
        parsed = _check_endpoint(self.config.endpoint_addr)
        context = self._tls_context(self.tls) if self.tls is not None else None
        sock = self._dial(parsed)
        if context is None:
            return sock
        try:
            return context.wrap_socket(sock, server_hostname=self.tls.server_name or None)
        except (OSError, ValueError):
            sock.close()
            raise

    def features(self) -> dict[Feature, bool]:
        return {
            Feature.OCI_EXPORTER: True,
            Feature.DOCKER_EXPORTER: False,
            Feature.CACHE_EXPORT: True,
            Feature.MULTI_PLATFORM: True,
        }


class RemoteFactory(Factory):
    """Creates drivers for daemons reached by address."""

    name = "remote"
    allows_instances = True

    def priority(self, endpoint: str, api: Any) -> int:
        return PRIORITY_SUPPORTED if is_valid_endpoint(endpoint) else PRIORITY_UNSUPPORTED

    def new(self, config: InitConfig) -> RemoteDriver:
        if config.files:
            raise ValueError("setting config file is not supported for remote driver")
        if config.buildkit_flags:
            raise ValueError("setting buildkit flags is not supported for remote driver")

        tls = TLSOptions()
        tls_enabled = False
        for key, value in (config.driver_opts or {}).items():
            if key == "servername":
                tls = replace(tls, server_name=value)
            elif key in _TLS_FILE_OPTIONS:
                if not os.path.isabs(value):
                    raise ValueError(f"non-absolute path '{value}' provided for {key}")
                tls = replace(tls, **{_TLS_FILE_OPTIONS[key]: value})
            else:
                raise ValueError(f"invalid driver option {key} for remote driver")
            tls_enabled = True

        if not tls_enabled:
            return RemoteDriver(self, config)

        if not tls.server_name:
            tls = replace(tls, server_name=urlsplit(config.endpoint_addr).hostname or "")
        missing = [
            option
            for option, attr in _TLS_FILE_OPTIONS.items()
            if not getattr(tls, attr)
        ]
        if missing:
            raise ValueError(f"tls enabled, but missing keys {', '.join(missing)}")
        return RemoteDriver(self, config, tls)


register(RemoteFactory())