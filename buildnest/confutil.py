"""Locating the builder configuration store and preparing BuildKit config files."""

from __future__ import annotations

import logging
import os
import posixpath
from collections.abc import Mapping

import tomlkit
from tomlkit.exceptions import ParseError

DEFAULT_BUILDKIT_STATE_DIR = "/var/lib/buildkit"
DEFAULT_BUILDKIT_CONFIG_DIR = "/etc/buildkit"

_MAX_CERT_SIZE = 1024 * 1024

_log = logging.getLogger(__name__)


class ConfigError(Exception):
    """A BuildKit configuration file could not be parsed or its files read."""


def config_dir(docker_config_path: str) -> str:
    """Return the store directory: ``$BUILDX_CONFIG`` or ``buildx`` beside the docker config file."""
    from_env = os.environ.get("BUILDX_CONFIG", "")
    if from_env:
        _log.debug('using config store "%s" based in "$BUILDX_CONFIG" environment variable', from_env)
        return from_env
    directory = os.path.join(os.path.dirname(docker_config_path), "buildx")
    _log.debug('using default config store "%s"', directory)
    return directory


def default_config_file(docker_config_path: str) -> str | None:
    """Return the default BuildKit configuration file if it exists."""
    candidate = os.path.join(config_dir(docker_config_path), "buildkitd.default.toml")
    return candidate if os.path.exists(candidate) else None


def _load_config_tree(path: str) -> tomlkit.TOMLDocument:
    try:
        with open(path, encoding="utf-8") as fh:
            text = fh.read()
    except OSError as exc:
        raise ConfigError(f"failed to load config from {path}: {exc}") from exc
    try:
        return tomlkit.parse(text)
    except ParseError as exc:
        raise ConfigError(f"failed to parse config: {exc}") from exc


def _read_limited(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read(_MAX_CERT_SIZE)


def _copy_file(source: str, prefix: str, kind: str, files: dict[str, bytes]) -> str:
    """Record ``source`` under ``prefix`` and return its path inside the container."""
    relative = posixpath.join(prefix, posixpath.basename(source))
    try:
        files[relative] = _read_limited(source)
    except OSError as exc:
        raise ConfigError(f"failed to read {kind} file: {source}: {exc}") from exc
    return posixpath.join(DEFAULT_BUILDKIT_CONFIG_DIR, relative)


def load_config_files(path: str) -> dict[str, bytes]:
    """Load a BuildKit config and the registry certificates it names.

    Certificate paths are rewritten to their location inside the container,
    and the rewritten config is returned under ``buildkitd.toml``.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(2, f"buildkit configuration file not found: {path}", path)
    try:
        os.stat(path)
    except OSError as exc:
        raise ConfigError(f"invalid buildkit configuration file: {path}: {exc}") from exc

    document = _load_config_tree(path)
    files: dict[str, bytes] = {}

    registries = document.get("registry")
    if isinstance(registries, Mapping):
        for reg_name, reg_conf in registries.items():
            if not isinstance(reg_conf, Mapping):
                continue
            prefix = posixpath.join("certs", str(reg_name))

            cas = reg_conf.get("ca")
            if isinstance(cas, list) and cas:
                reg_conf["ca"] = [_copy_file(str(ca), prefix, "CA", files) for ca in cas]

            keypairs = reg_conf.get("keypair")
            if not isinstance(keypairs, list) or not keypairs:
                continue
            for keypair in keypairs:
                if not isinstance(keypair, Mapping):
                    continue
                key = str(keypair.get("key", ""))
                if key:
                    keypair["key"] = _copy_file(key, prefix, "key", files)
                cert = str(keypair.get("cert", ""))
                if cert:
                    keypair["cert"] = _copy_file(cert, prefix, "cert", files)

    files["buildkitd.toml"] = tomlkit.dumps(document).encode("utf-8")
    return files