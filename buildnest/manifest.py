"""Kubernetes manifests for running BuildKit as a Deployment."""

from __future__ import annotations

import copy
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any

from .driver import DEFAULT_IMAGE, QEMU_IMAGE
from .platforms import Platform, format_all

CONTAINER_NAME = "buildkitd"
ANNOTATION_PLATFORM = "buildx.docker.com/platform"
_CONFIG_DIR = "/etc/buildkit"
_APPARMOR_ANNOTATION = "container.apparmor.security.beta.kubernetes.io/" + CONTAINER_NAME

_QUANTITY_PATTERN = re.compile(
    r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+|[KMGTPE]i|[numkMGTPE])?"
)


@dataclass
class Toleration:
    """A pod toleration of a node taint."""

    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""
    toleration_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the Kubernetes form, leaving out unset fields."""
        data: dict[str, Any] = {}
        for name, value in (
            ("key", self.key),
            ("operator", self.operator),
            ("value", self.value),
            ("effect", self.effect),
        ):
            if value:
                data[name] = value
        if self.toleration_seconds is not None:
            data["tolerationSeconds"] = self.toleration_seconds
        return data


@dataclass
class QemuOpt:
    """Whether and with which image to install binfmt emulators."""

    install: bool = False
    image: str = QEMU_IMAGE


@dataclass
class DeploymentOpt:
    """Settings for the BuildKit Deployment."""

    namespace: str = ""
    name: str = ""
    image: str = DEFAULT_IMAGE
    replicas: int = 1
    qemu: QemuOpt = field(default_factory=QemuOpt)
    buildkit_flags: list[str] | None = None
    config_files: dict[str, bytes] | None = None
    rootless: bool = False
    node_selector: dict[str, str] = field(default_factory=dict)
    tolerations: list[Toleration] = field(default_factory=list)
    requests_cpu: str = ""
    requests_memory: str = ""
    limits_cpu: str = ""
    limits_memory: str = ""
    platforms: list[Platform] = field(default_factory=list)


def _parse_quantity(value: str) -> str:
    if not _QUANTITY_PATTERN.fullmatch(value):
        raise ValueError(
            f"quantities must match the regular expression "
            f"'{_QUANTITY_PATTERN.pattern}': {value!r}"
        )
    return value


@dataclass
class _ConfigGroup:
    name: str
    path: str
    files: dict[str, str]


def _split_config_files(files: dict[str, bytes]) -> list[_ConfigGroup]:
    groups: list[_ConfigGroup] = []
    by_dir: dict[str, _ConfigGroup] = {}
    numbered = 0
    for key in sorted(files):
        directory = posixpath.dirname(key) or "."
        group = by_dir.get(directory)
        if group is None:
            name = "config"
            if directory != ".":
                numbered += 1
                name = f"config-{numbered}"
            group = _ConfigGroup(name=name, path=directory, files={})
            by_dir[directory] = group
            groups.append(group)
        group.files[posixpath.basename(key)] = files[key].decode("utf-8", errors="replace")
    return groups


def _metadata(namespace: str, name: str | None, **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if namespace:
        data["namespace"] = namespace
    if name:
        data["name"] = name
    data.update(extra)
    return data


def new_deployment(opt: DeploymentOpt) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Build the Deployment and the ConfigMaps holding its configuration files."""
    labels = {"app": opt.name}
    annotations: dict[str, str] = {}
    if opt.platforms:
        annotations[ANNOTATION_PLATFORM] = ",".join(format_all(opt.platforms))

    container: dict[str, Any] = {
        "name": CONTAINER_NAME,
        "image": opt.image,
        "securityContext": {"privileged": True},
        "readinessProbe": {"exec": {"command": ["buildctl", "debug", "workers"]}},
        "resources": {"requests": {}, "limits": {}},
    }
    if opt.buildkit_flags is not None:
        container["args"] = list(opt.buildkit_flags)

    pod_spec: dict[str, Any] = {"containers": [container]}
    deployment: dict[str, Any] = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(
            opt.namespace, opt.name, labels=dict(labels), annotations=dict(annotations)
        ),
        "spec": {
            "replicas": opt.replicas,
            "selector": {"matchLabels": dict(labels)},
            "template": {
                "metadata": {"labels": dict(labels), "annotations": dict(annotations)},
                "spec": pod_spec,
            },
        },
    }

    config_maps: list[dict[str, Any]] = []
    for group in _split_config_files(opt.config_files or {}):
        map_name = f"{opt.name}-{group.name}"
        config_maps.append(
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": _metadata(
                    opt.namespace, map_name, annotations=copy.deepcopy(annotations)
                ),
                "data": group.files,
            }
        )
        container["volumeMounts"] = [
            {
                "name": group.name,
                "mountPath": posixpath.normpath(posixpath.join(_CONFIG_DIR, group.path)),
            }
        ]
        pod_spec["volumes"] = [{"name": "config", "configMap": {"name": map_name}}]

    if opt.qemu.install:
        pod_spec["initContainers"] = [
            {
                "name": "qemu",
                "image": opt.qemu.image,
                "args": ["--install", "all"],
                "securityContext": {"privileged": True},
            }
        ]

    if opt.rootless:
        container["args"] = container.get("args", []) + ["--oci-worker-no-process-sandbox"]
        container["securityContext"] = {"seccompProfile": {"type": "Unconfined"}}
        deployment["spec"]["template"]["metadata"]["annotations"][_APPARMOR_ANNOTATION] = (
            "unconfined"
        )

    if opt.node_selector:
        pod_spec["nodeSelector"] = dict(opt.node_selector)
    if opt.tolerations:
        pod_spec["tolerations"] = [t.to_dict() for t in opt.tolerations]

    resources = container["resources"]
    if opt.requests_cpu:
        resources["requests"]["cpu"] = _parse_quantity(opt.requests_cpu)
    if opt.requests_memory:
        resources["requests"]["memory"] = _parse_quantity(opt.requests_memory)
    if opt.limits_cpu:
        resources["limits"]["cpu"] = _parse_quantity(opt.limits_cpu)
    if opt.limits_memory:
        resources["limits"]["memory"] = _parse_quantity(opt.limits_memory)

    return deployment, config_maps