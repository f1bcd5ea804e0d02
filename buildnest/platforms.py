"""Parsing, normalising and formatting of OS/architecture platform specifiers."""

from __future__ import annotations

import platform as _host
import re
import sys
from dataclasses import dataclass, replace
from typing import Iterable

_COMPONENT_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

_KNOWN_OS = frozenset(
    {
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos",
        "ios", "js", "linux", "nacl", "netbsd", "openbsd", "plan9", "solaris",
        "windows", "zos",
    }
)

_KNOWN_ARCH = frozenset(
    {
        "386", "amd64", "amd64p32", "arm", "armbe", "arm64", "arm64be", "ppc64",
        "ppc64le", "loong64", "mips", "mipsle", "mips64", "mips64le", "mips64p32",
        "mips64p32le", "ppc", "riscv", "riscv64", "s390", "s390x", "sparc",
        "sparc64", "wasm",
    }
)


@dataclass(frozen=True)
class Platform:
    """A target platform: operating system, architecture and optional variant."""

    os: str = ""
    architecture: str = ""
    variant: str = ""
    os_version: str = ""
    os_features: tuple[str, ...] = ()

    def __str__(self) -> str:
        return format_platform(self)


def _host_os() -> str:
    name = sys.platform.lower()
    if name.startswith("linux"):
        return "linux"
    if name.startswith(("win32", "cygwin", "msys")):
        return "windows"
    if name.startswith("darwin"):
        return "darwin"
    for known in ("freebsd", "openbsd", "netbsd", "dragonfly", "aix", "sunos"):
        if name.startswith(known):
            return "solaris" if known == "sunos" else known
    return name


def _host_arch() -> tuple[str, str]:
    machine = _host.machine().lower()
    arm = re.fullmatch(r"armv(\d+)\w*", machine)
    if arm:
        return _normalize_arch("arm", arm.group(1))
    if machine in ("i686", "i586", "x86"):
        return "386", ""
    if machine == "":
        return "amd64", ""
    return _normalize_arch(machine, "")


def _normalize_os(os_name: str) -> str:
    if not os_name:
        return _host_os()
    os_name = os_name.lower()
    if os_name == "macos":
        return "darwin"
    return os_name


def _normalize_arch(arch: str, variant: str) -> tuple[str, str]:
    arch, variant = arch.lower(), variant.lower()
    if arch == "i386":
        return "386", ""
    if arch in ("x86_64", "x86-64"):
        return "amd64", ""
    if arch in ("aarch64", "arm64"):
        return "arm64", "" if variant in ("8", "v8") else variant
    if arch == "armhf":
        return "arm", "v7"
    if arch == "armel":
        return "arm", "v6"
    if arch == "arm":
        if variant in ("", "7"):
            return arch, "v7"
        if variant in ("5", "6", "8"):
            return arch, "v" + variant
    return arch, variant


def default_spec() -> Platform:
    """Return the platform of the running host."""
    arch, variant = _host_arch()
    return Platform(os=_host_os(), architecture=arch, variant=variant if arch == "arm" else "")


def parse_platform(specifier: str) -> Platform:
    """Parse a single ``os[/arch[/variant]]`` specifier."""
    if "*" in specifier:
        raise ValueError(f"{specifier!r}: wildcards not yet supported")
    parts = specifier.split("/")
    for part in parts:
        if not _COMPONENT_PATTERN.fullmatch(part):
            raise ValueError(
                f"{part!r} is an invalid component of {specifier!r}: "
                "platform specifier component must match \"^[A-Za-z0-9_-]+$\""
            )

    if len(parts) == 1:
        os_name = _normalize_os(parts[0])
        if os_name in _KNOWN_OS:
            host = default_spec()
            variant = host.variant if host.architecture == "arm" and host.variant != "v7" else ""
            return Platform(os=os_name, architecture=host.architecture, variant=variant)
        arch, variant = _normalize_arch(parts[0], "")
        if arch == "arm" and variant == "v7":
            variant = ""
        if arch in _KNOWN_ARCH:
            return Platform(os=_host_os(), architecture=arch, variant=variant)
        raise ValueError(f"{specifier!r}: unknown operating system or architecture")

    if len(parts) == 2:
        arch, variant = _normalize_arch(parts[1], "")
        if arch == "arm" and variant == "v7":
            variant = ""
        return Platform(os=_normalize_os(parts[0]), architecture=arch, variant=variant)

    if len(parts) == 3:
        arch, variant = _normalize_arch(parts[1], parts[2])
        if arch == "arm64" and variant == "":
            variant = "v8"
        return Platform(os=_normalize_os(parts[0]), architecture=arch, variant=variant)

    raise ValueError(f"{specifier!r}: cannot parse platform specifier")


def normalize(platform: Platform) -> Platform:
    """Return the canonical form of a platform."""
    arch, variant = _normalize_arch(platform.architecture, platform.variant)
    return replace(
        platform,
        os=_normalize_os(platform.os),
        architecture=arch,
        variant=variant,
        os_features=(),
    )


def format_platform(platform: Platform) -> str:
    """Format a platform as ``os/arch[/variant]``."""
    if not platform.os:
        return "unknown"
    return "/".join(p for p in (platform.os, platform.architecture, platform.variant) if p)


def parse(specifiers: Iterable[str]) -> list[Platform]:
    """Parse specifiers, each possibly a comma separated list; ``local`` means the host."""
    result: list[Platform] = []
    for specifier in specifiers:
        parts = specifier.split(",")
        if len(parts) > 1:
            result.extend(parse(parts))
            continue
        if specifier.casefold() == "local":
            found = default_spec()
        else:
            found = parse_platform(specifier)
        result.append(normalize(found))
    return result


def dedupe(platforms: Iterable[Platform]) -> list[Platform]:
    """Normalise platforms and drop repeats, keeping first occurrences in order."""
    seen: set[str] = set()
    result: list[Platform] = []
    for item in platforms:
        item = normalize(item)
        key = format_platform(item)
        if key in seen:
            continue
        seen.add(key)
        result.append(item)
    return result


def format_in_groups(*args: Iterable[Platform]) -> list[str]:
    """Format several groups of platforms once each; the first group is starred."""
    seen: set[str] = set()
    result: list[str] = []
    for index, group in enumerate(args):
        for item in group:
            key = format_platform(normalize(item))
            if key in seen:
                continue
            seen.add(key)
            result.append(key + "*" if index == 0 else key)
    return result


def format_all(platforms: Iterable[Platform]) -> list[str]:
    """Format every platform in order."""
    return [format_platform(p) for p in platforms]