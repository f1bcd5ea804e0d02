"""On-disk store of builder instances and the current builder per endpoint."""

from __future__ import annotations

import base64
import hashlib
import json
import os
import shutil
import tempfile
from contextlib import contextmanager, suppress
from typing import Any, Iterator

from filelock import FileLock

from .nodegroup import Node, NodeGroup, validate_name
from .platforms import Platform


def _to_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:20]


def _atomic_write(path: str, data: bytes, mode: int = 0o600) -> None:
    directory, base = os.path.split(path)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{base}-")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        with suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def _remove_all(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path, ignore_errors=True)
    else:
        with suppress(FileNotFoundError):
            os.unlink(path)


def _encode_platform(p: Platform) -> dict[str, Any]:
    data: dict[str, Any] = {"architecture": p.architecture, "os": p.os}
    if p.os_version:
        data["os.version"] = p.os_version
    if p.os_features:
        data["os.features"] = list(p.os_features)
    if p.variant:
        data["variant"] = p.variant
    return data


def _decode_platform(data: dict[str, Any]) -> Platform:
    return Platform(
        os=data.get("os", ""),
        architecture=data.get("architecture", ""),
        variant=data.get("variant", ""),
        os_version=data.get("os.version", ""),
        os_features=tuple(data.get("os.features") or ()),
    )


def _encode_node(node: Node) -> dict[str, Any]:
    return {
        "Name": node.name,
        "Endpoint": node.endpoint,
        "Platforms": [_encode_platform(p) for p in node.platforms] or None,
        "Flags": node.flags,
        "DriverOpts": node.driver_opts,
        "Files": None
        if node.files is None
        else {k: base64.b64encode(v).decode("ascii") for k, v in node.files.items()},
    }


def _decode_node(data: dict[str, Any]) -> Node:
    files = data.get("Files")
    return Node(
        name=data.get("Name", ""),
        endpoint=data.get("Endpoint", ""),
        platforms=[_decode_platform(p) for p in data.get("Platforms") or []],
        flags=data.get("Flags"),
        driver_opts=data.get("DriverOpts"),
        files=None if files is None else {k: base64.b64decode(v) for k, v in files.items()},
    )


def _encode_node_group(group: NodeGroup) -> bytes:
    data = {
        "Name": group.name,
        "Driver": group.driver,
        "Nodes": [_encode_node(n) for n in group.nodes] or None,
        "Dynamic": group.dynamic,
    }
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def _decode_node_group(raw: bytes) -> NodeGroup:
    data = json.loads(raw)
    return NodeGroup(
        name=data.get("Name", ""),
        driver=data.get("Driver", ""),
        nodes=[_decode_node(n) for n in data.get("Nodes") or []],
        dynamic=bool(data.get("Dynamic", False)),
    )


class Store:
    """A directory holding builder instances, current selections and defaults."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = os.fspath(root)
        os.makedirs(os.path.join(self.root, "instances"), mode=0o700, exist_ok=True)
        os.makedirs(os.path.join(self.root, "defaults"), mode=0o700, exist_ok=True)

    @contextmanager
    def txn(self) -> Iterator[Txn]:
        """Hold the store's file lock for the duration of the block."""
        with FileLock(os.path.join(self.root, ".lock")):
            yield Txn(self.root)


class Txn:
    """Operations on a locked store."""

    def __init__(self, root: str) -> None:
        self._root = root

    def _path(self, *parts: str) -> str:
        return os.path.join(self._root, *parts)

    def list(self) -> list[NodeGroup]:
        """Return every stored builder instance, sorted by name."""
        instances = self._path("instances")
        groups = []
        for entry in os.listdir(instances):
            try:
                groups.append(self.node_group_by_name(entry))
            except FileNotFoundError:
                _remove_all(os.path.join(instances, entry))
        return sorted(groups, key=lambda g: g.name)

    def node_group_by_name(self, name: str) -> NodeGroup:
        """Load one builder instance; raise FileNotFoundError if it does not exist."""
        name = validate_name(name)
        with open(self._path("instances", name), "rb") as fh:
            return _decode_node_group(fh.read())

    def save(self, node_group: NodeGroup) -> None:
        """Write a builder instance, replacing any previous version."""
        name = validate_name(node_group.name)
        _atomic_write(self._path("instances", name), _encode_node_group(node_group))

    def remove(self, name: str) -> None:
        """Delete a builder instance; missing instances are ignored."""
        name = validate_name(name)
        _remove_all(self._path("instances", name))

    def set_current(self, key: str, name: str, global_: bool, default: bool) -> None:
        """Select the current builder for an endpoint key, optionally as its default."""
        self._write_current(key, name, global_)
        default_path = self._path("defaults", _to_hash(key))
        if default:
            _atomic_write(default_path, name.encode("utf-8"))
        else:
            _remove_all(default_path)

    def _write_current(self, key: str, name: str, global_: bool) -> None:
        data = {"Key": key, "Name": name, "Global": global_}
        _atomic_write(self._path("current"), json.dumps(data, separators=(",", ":")).encode())

    def _reset(self, key: str) -> None:
        self._write_current(key, "", False)

    def _lookup(self, name: str) -> NodeGroup | None:
        try:
            return self.node_group_by_name(name)
        except (OSError, ValueError):
            return None

    def current(self, key: str) -> NodeGroup | None:
        """Return the current builder for an endpoint key, or None."""
        try:
            with open(self._path("current"), "rb") as fh:
                raw: bytes | None = fh.read()
        except FileNotFoundError:
            raw = None

        if raw is not None:
            selected = json.loads(raw)
            name = selected.get("Name", "")
            if name:
                if selected.get("Global", False):
                    group = self._lookup(name)
                    if group is not None:
                        return group
                if selected.get("Key", "") == key:
                    return self._lookup(name)

        try:
            with open(self._path("defaults", _to_hash(key)), "rb") as fh:
                default_name = fh.read().decode("utf-8")
        except FileNotFoundError:
            self._reset(key)
            return None

        group = self._lookup(default_name)
        if group is None:
            self._reset(key)
        self.set_current(key, default_name, False, True)
        return group