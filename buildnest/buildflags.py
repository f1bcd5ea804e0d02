"""Parsers for build command-line flags: cache, outputs, secrets, ssh, entitlements."""

from __future__ import annotations

import csv
import enum
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Iterable

EXPORTER_IMAGE = "image"
EXPORTER_LOCAL = "local"
EXPORTER_DOCKER = "docker"
EXPORTER_OCI = "oci"
EXPORTER_TAR = "tar"


def _read_csv_fields(value: str) -> list[str]:
    try:
        row = next(csv.reader([value], strict=True), None)
    except csv.Error as exc:
        raise ValueError(f"invalid csv value {value!r}: {exc}") from exc
    if not row:
        raise ValueError(f"empty value {value!r}")
    return row


@dataclass
class CacheOptionsEntry:
    """A cache import or export entry."""

    type: str = ""
    attrs: dict[str, str] = field(default_factory=dict)


def _add_github_token(entry: CacheOptionsEntry) -> bool:
    if entry.type != "gha":
        return True
    if "token" not in entry.attrs and "ACTIONS_RUNTIME_TOKEN" in os.environ:
        entry.attrs["token"] = os.environ["ACTIONS_RUNTIME_TOKEN"]
    if "url" not in entry.attrs and "ACTIONS_CACHE_URL" in os.environ:
        entry.attrs["url"] = os.environ["ACTIONS_CACHE_URL"]
    return bool(entry.attrs.get("token")) and bool(entry.attrs.get("url"))


def parse_cache_entry(values: Iterable[str]) -> list[CacheOptionsEntry]:
    """Parse ``--cache-from``/``--cache-to`` values."""
    entries: list[CacheOptionsEntry] = []
    for value in values:
        fields = _read_csv_fields(value)
        if all("=" not in f for f in fields):
            entries.extend(CacheOptionsEntry("registry", {"ref": f}) for f in fields)
            continue
        entry = CacheOptionsEntry()
        for f in fields:
            key, sep, val = f.partition("=")
            if not sep:
                raise ValueError(f"invalid value {f}")
            key = key.lower()
            if key == "type":
                entry.type = val
            else:
                entry.attrs[key] = val
        if not entry.type:
            raise ValueError(f"type required form> {value!r}")
        if not _add_github_token(entry):
            continue
        entries.append(entry)
    return entries


class Entitlement(str, enum.Enum):
    """Extra privileges a build may request."""

    SECURITY_INSECURE = "security.insecure"
    NETWORK_HOST = "network.host"


def parse_entitlements(values: Iterable[str]) -> list[Entitlement]:
    """Parse ``--allow`` values."""
    result = []
    for value in values:
        try:
            result.append(Entitlement(value))
        except ValueError:
            raise ValueError(f"invalid entitlement: {value}") from None
    return result


@dataclass
class ExportEntry:
    """A build output: exporter type, attributes and local destination."""

    type: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    output_dir: str = ""
    output: Any = None


def _stdout_output(exporter: str) -> Any:
    stream = sys.stdout
    if stream.isatty():
        raise ValueError(
            f"output file is required for {exporter} exporter. refusing to write to console"
        )
    return getattr(stream, "buffer", stream)


def _open_destination(dest: str) -> Any:
    if os.path.isdir(dest):
        raise ValueError(f"destination file {dest} is a directory")
    try:
        return open(dest, "wb")
    except OSError as exc:
        raise ValueError(f"failed to open {exc}") from exc


def parse_outputs(values: Iterable[str]) -> list[ExportEntry]:
    """Parse ``--output`` values, opening destination files where needed."""
    outputs: list[ExportEntry] = []
    for value in values:
        fields = _read_csv_fields(value)
        entry = ExportEntry()
        if len(fields) == 1 and fields[0] == value and not value.startswith("type="):
            if value != "-":
                outputs.append(ExportEntry(type=EXPORTER_LOCAL, output_dir=value))
                continue
            entry = ExportEntry(type=EXPORTER_TAR, attrs={"dest": value})

        if not entry.type:
            for f in fields:
                key, sep, val = f.partition("=")
                if not sep:
                    raise ValueError(f"invalid value {f}")
                key = key.lower().strip()
                if key == "type":
                    entry.type = val
                else:
                    entry.attrs[key] = val
        if not entry.type:
            raise ValueError("type is required for output")

        if entry.type == EXPORTER_LOCAL:
            dest = entry.attrs.pop("dest", None)
            if dest is None:
                raise ValueError("dest is required for local output")
            entry.output_dir = dest
        elif entry.type in (EXPORTER_OCI, EXPORTER_DOCKER, EXPORTER_TAR):
            dest = entry.attrs.pop("dest", None)
            if dest is None:
                dest = "" if entry.type == EXPORTER_DOCKER else "-"
            if dest == "-":
                entry.output = _stdout_output(entry.type)
            elif dest:
                entry.output = _open_destination(dest)
        elif entry.type == "registry":
            entry.type = EXPORTER_IMAGE
            entry.attrs.setdefault("push", "true")

        outputs.append(entry)
    return outputs


@dataclass
class SecretSource:
    """Where a build secret comes from: a file or an environment variable."""

    id: str = ""
    file_path: str = ""
    env: str = ""


def parse_secret(value: str) -> SecretSource:
    """Parse one ``--secret`` value such as ``id=mysecret,src=/path``."""
    try:
        fields = _read_csv_fields(value)
    except ValueError as exc:
        raise ValueError(f"failed to parse csv secret: {exc}") from exc

    source = SecretSource()
    secret_type = ""
    for f in fields:
        key, sep, val = f.partition("=")
        key = key.lower()
        if not sep:
            raise ValueError(f"invalid field '{f}' must be a key=value pair")
        if key == "type":
            if val not in ("file", "env"):
                raise ValueError(f"unsupported secret type {val!r}")
            secret_type = val
        elif key == "id":
            source.id = val
        elif key in ("source", "src"):
            source.file_path = val
        elif key == "env":
            source.env = val
        else:
            raise ValueError(f"unexpected key '{key}' in '{f}'")
    if secret_type == "env" and not source.env:
        source.env = source.file_path
        source.file_path = ""
    return source


def parse_secret_specs(values: Iterable[str]) -> list[SecretSource]:
    """Parse every ``--secret`` value."""
    return [parse_secret(v) for v in values]


@dataclass
class AgentConfig:
    """An SSH agent socket or key set exposed to the build under an id."""

    id: str
    paths: list[str] = field(default_factory=list)


def parse_ssh(value: str) -> AgentConfig:
    """Parse one ``--ssh`` value such as ``default`` or ``id=path1,path2``."""
    ident, sep, rest = value.partition("=")
    return AgentConfig(id=ident, paths=rest.split(",") if sep else [])


def parse_ssh_specs(values: Iterable[str]) -> list[AgentConfig]:
    """Parse every ``--ssh`` value."""
    return [parse_ssh(v) for v in values]