import pytest

from buildnest.manifest import (
    ANNOTATION_PLATFORM,
    DeploymentOpt,
    QemuOpt,
    Toleration,
    new_deployment,
)
from buildnest.platforms import parse


def _container(deployment):
    return deployment["spec"]["template"]["spec"]["containers"][0]


def test_basic_deployment_shape():
    deployment, maps = new_deployment(
        DeploymentOpt(name="builder", image="img:1", replicas=3, buildkit_flags=["--debug"])
    )
    assert maps == []
    assert deployment["apiVersion"] == "apps/v1"
    assert deployment["kind"] == "Deployment"
    assert deployment["metadata"]["name"] == "builder"
    assert deployment["spec"]["replicas"] == 3
    assert deployment["spec"]["selector"]["matchLabels"] == {"app": "builder"}
    container = _container(deployment)
    assert container["name"] == "buildkitd"
    assert container["image"] == "img:1"
    assert container["args"] == ["--debug"]
    assert container["readinessProbe"]["exec"]["command"] == ["buildctl", "debug", "workers"]
    assert container["securityContext"] == {"privileged": True}


def test_platform_annotation():
    deployment, _ = new_deployment(
        DeploymentOpt(name="b", platforms=parse(["linux/amd64", "linux/arm64"]))
    )
    value = deployment["metadata"]["annotations"][ANNOTATION_PLATFORM]
    assert value == "linux/amd64,linux/arm64"
    assert deployment["spec"]["template"]["metadata"]["annotations"][ANNOTATION_PLATFORM] == value


def test_config_files_become_config_maps():
    files = {"buildkitd.toml": b"debug = true\n", "certs/reg/ca.pem": b"CA"}
    deployment, maps = new_deployment(DeploymentOpt(name="b", config_files=files))
    assert len(maps) == 2
    names = [m["metadata"]["name"] for m in maps]
    assert "b-config" in names
    top = next(m for m in maps if m["metadata"]["name"] == "b-config")
    assert top["data"] == {"buildkitd.toml": "debug = true\n"}
    assert top["kind"] == "ConfigMap"
    volumes = deployment["spec"]["template"]["spec"]["volumes"]
    assert volumes[0]["name"] == "config"
    assert volumes[0]["configMap"]["name"] in names


def test_single_top_level_config_mount_path():
    deployment, maps = new_deployment(
        DeploymentOpt(name="b", config_files={"buildkitd.toml": b"x"})
    )
    mounts = _container(deployment)["volumeMounts"]
    assert mounts == [{"name": "config", "mountPath": "/etc/buildkit"}]
    assert maps[0]["metadata"]["name"] == "b-config"


def test_qemu_init_container():
    deployment, _ = new_deployment(
        DeploymentOpt(name="b", qemu=QemuOpt(install=True, image="qemu:latest"))
    )
    init = deployment["spec"]["template"]["spec"]["initContainers"]
    assert init[0]["image"] == "qemu:latest"
    assert init[0]["args"] == ["--install", "all"]


def test_no_qemu_by_default():
    deployment, _ = new_deployment(DeploymentOpt(name="b"))
    assert "initContainers" not in deployment["spec"]["template"]["spec"]


def test_rootless():
    deployment, _ = new_deployment(DeploymentOpt(name="b", rootless=True))
    container = _container(deployment)
    assert container["args"][-1] == "--oci-worker-no-process-sandbox"
    assert "privileged" not in container["securityContext"]
    annotations = deployment["spec"]["template"]["metadata"]["annotations"]
    assert annotations["container.apparmor.security.beta.kubernetes.io/buildkitd"] == "unconfined"


def test_node_selector_and_tolerations():
    deployment, _ = new_deployment(
        DeploymentOpt(
            name="b",
            node_selector={"selector1": "value1"},
            tolerations=[Toleration(key="tolerationKey2", operator="Exists")],
        )
    )
    spec = deployment["spec"]["template"]["spec"]
    assert spec["nodeSelector"] == {"selector1": "value1"}
    assert spec["tolerations"] == [{"key": "tolerationKey2", "operator": "Exists"}]


def test_resources():
    deployment, _ = new_deployment(
        DeploymentOpt(
            name="b",
            requests_cpu="100m",
            requests_memory="32Mi",
            limits_cpu="200m",
            limits_memory="64Mi",
        )
    )
    resources = _container(deployment)["resources"]
    assert resources["requests"] == {"cpu": "100m", "memory": "32Mi"}
    assert resources["limits"] == {"cpu": "200m", "memory": "64Mi"}


@pytest.mark.parametrize("field_name", ["requests_cpu", "requests_memory", "limits_cpu", "limits_memory"])
def test_invalid_quantity(field_name):
    with pytest.raises(ValueError):
        new_deployment(DeploymentOpt(name="b", **{field_name: "lots"}))