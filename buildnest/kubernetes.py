"""Option handling for the Kubernetes driver."""

from __future__ import annotations

import re

from .driver import DEFAULT_ROOTLESS_IMAGE, InitConfig
from .manifest import DeploymentOpt, Toleration

DRIVER_NAME = "kubernetes"
LOADBALANCE_RANDOM = "random"
LOADBALANCE_STICKY = "sticky"

_DEPLOYMENT_PREFIX = "buildx_buildkit_"
_INT_PATTERN = re.compile(r"[+-]?\d+")
_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _parse_int(value: str) -> int:
    if not _INT_PATTERN.fullmatch(value):
        raise ValueError(f'invalid integer "{value}"')
    return int(value)


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f'invalid boolean "{value}"')


def _parse_node_selector(value: str) -> dict[str, str]:
    selector: dict[str, str] = {}
    for item in value.strip('"').split(","):
        parts = item.split("=")
        if len(parts) == 2:
            selector[parts[0]] = parts[1]
    return selector


def _parse_tolerations(value: str) -> list[Toleration]:
    tolerations = []
    for spec in value.split(";"):
        toleration = Toleration()
        for item in spec.split(","):
            parts = item.split("=")
            if len(parts) != 2:
                continue
            key, val = parts
            if key == "key":
                toleration.key = val
            elif key == "operator":
                toleration.operator = val
            elif key == "value":
                toleration.value = val
            elif key == "effect":
                toleration.effect = val
            elif key == "tolerationSeconds":
                toleration.toleration_seconds = _parse_int(val)
            else:
                raise ValueError(f"invalid toleration {value!r}")
        tolerations.append(toleration)
    return tolerations


def process_driver_opts(
    deployment_name: str, namespace: str, config: InitConfig
) -> tuple[DeploymentOpt, str, str]:
    """Turn driver options into Deployment settings, load-balance mode and namespace."""
    opt = DeploymentOpt(
        name=deployment_name,
        buildkit_flags=config.buildkit_flags,
        platforms=list(config.platforms or []),
        config_files=config.files,
    )
    loadbalance = LOADBALANCE_STICKY
    driver_opts = config.driver_opts or {}

    for key, value in driver_opts.items():
        if key == "image":
            if value:
                opt.image = value
        elif key == "namespace":
            namespace = value
        elif key == "replicas":
            opt.replicas = _parse_int(value)
        elif key == "requests.cpu":
            opt.requests_cpu = value
        elif key == "requests.memory":
            opt.requests_memory = value
        elif key == "limits.cpu":
            opt.limits_cpu = value
        elif key == "limits.memory":
            opt.limits_memory = value
        elif key == "rootless":
            opt.rootless = _parse_bool(value)
            if "image" not in driver_opts:
                opt.image = DEFAULT_ROOTLESS_IMAGE
        elif key == "nodeselector":
            opt.node_selector = _parse_node_selector(value)
        elif key == "tolerations":
            opt.tolerations = _parse_tolerations(value)
        elif key == "loadbalance":
            if value not in (LOADBALANCE_STICKY, LOADBALANCE_RANDOM):
                raise ValueError(f"invalid loadbalance {value!r}")
            loadbalance = value
        elif key == "qemu.install":
            opt.qemu.install = _parse_bool(value)
        elif key == "qemu.image":
            if value:
                opt.qemu.image = value
        else:
            raise ValueError(f"invalid driver option {key} for driver {DRIVER_NAME}")

    return opt, loadbalance, namespace


def buildx_name_to_deployment_name(name: str) -> str:
    """Convert a builder node name to a Deployment name.

    ``buildx_buildkit_loving_mendeleev0`` becomes ``loving-mendeleev0``.
    """
    if not name.startswith(_DEPLOYMENT_PREFIX):
        raise ValueError(f'expected a string with "{_DEPLOYMENT_PREFIX}", got {name!r}')
    return name[len(_DEPLOYMENT_PREFIX):].replace("_", "-")