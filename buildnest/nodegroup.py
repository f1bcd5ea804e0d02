"""Builder instances: named groups of build nodes and their validation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from itertools import count
from typing import Iterable

from .confutil import load_config_files
from .platforms import Platform, format_platform, parse

_NAME_PATTERN = re.compile(r"[a-zA-Z][a-zA-Z0-9.\-_]*")


def validate_name(name: str) -> str:
    """Check a builder or node name and return it lower-cased."""
    if not _NAME_PATTERN.fullmatch(name):
        raise ValueError(
            f"invalid name {name}, name needs to start with a letter and may not "
            "contain symbols, except ._-"
        )
    return name.lower()


@dataclass
class Node:
    """One build node of a builder instance."""

    name: str
    endpoint: str = ""
    platforms: list[Platform] = field(default_factory=list)
    flags: list[str] | None = None
    driver_opts: dict[str, str] | None = None
    files: dict[str, bytes] | None = None


@dataclass
class NodeGroup:
    """A builder instance: a driver and the nodes it runs on."""

    name: str = ""
    driver: str = ""
    nodes: list[Node] = field(default_factory=list)
    dynamic: bool = False

    def _find_node(self, name: str) -> int | None:
        return next((i for i, n in enumerate(self.nodes) if n.name == name), None)

    def _next_node_name(self) -> str:
        return next(
            candidate
            for candidate in (f"{self.name}{i}" for i in count())
            if self._find_node(candidate) is None
        )

    def leave(self, name: str) -> None:
        """Remove a node; the last node may not be removed."""
        if self.dynamic:
            raise ValueError("dynamic node group does not support Leave")
        index = self._find_node(name)
        if index is None:
            raise ValueError(f'node "{name}" not found for {self.name}')
        if len(self.nodes) == 1:
            raise ValueError("can not leave last node, do you want to rm instance instead?")
        del self.nodes[index]

    def update(
        self,
        name: str,
        endpoint: str,
        platforms: Iterable[str] | None,
        endpoints_set: bool,
        action_append: bool,
        flags: list[str] | None,
        config_file: str,
        driver_opts: dict[str, str] | None,
    ) -> None:
        """Change an existing node or add a new one."""
        if self.dynamic:
            raise ValueError("dynamic node group does not support Update")
        platform_specs = list(platforms or [])
        index = self._find_node(name)
        if index is None and not action_append:
            if self.nodes:
                raise ValueError(f"node {name} not found, did you mean to append?")
            self.nodes = []

        parsed = parse(platform_specs)

        if index is not None:
            node = self.nodes[index]
            if endpoints_set:
                node.endpoint = endpoint
            if platform_specs:
                node.platforms = parsed
            if flags is not None:
                node.flags = flags
            self._validate_duplicates(endpoint, index)
            return

        if not name:
            name = self._next_node_name()
        name = validate_name(name)

        node = Node(
            name=name,
            endpoint=endpoint,
            platforms=parsed,
            flags=flags,
            driver_opts=driver_opts,
        )
        if config_file:
            node.files = load_config_files(config_file)

        self.nodes.append(node)
        self._validate_duplicates(endpoint, len(self.nodes) - 1)

    def _validate_duplicates(self, endpoint: str, index: int) -> None:
        if sum(1 for n in self.nodes if n.endpoint == endpoint) > 1:
            raise ValueError(f"invalid duplicate endpoint {endpoint}")

        claimed = {format_platform(p) for p in self.nodes[index].platforms}
        for i, node in enumerate(self.nodes):
            if i != index:
                node.platforms = [p for p in node.platforms if format_platform(p) not in claimed]