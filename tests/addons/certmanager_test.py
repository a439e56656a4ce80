"""Tests for the cert-manager addon."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
import semver
import yaml
from kubernetes_asyncio.client import (
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStatus,
    V1Job,
    V1JobStatus,
    V1LabelSelector,
    V1Namespace,
    V1ObjectMeta,
    V1PodTemplateSpec,
)

from ktf.addons.certmanager import CertManagerAddonBuilder
from ktf.constants import CERT_MANAGER_VERSION
from ktf.exceptions import ConfigurationError
from ktf.timeout import Timeout

from ..support.cluster import FakeCluster
from ..support.kubectl import MockKubectl
from ..support.kubernetes import MockKubernetesApi

ISSUER: dict[str, Any] = {
    "apiVersion": "cert-manager.io/v1",
    "kind": "ClusterIssuer",
    "metadata": {"name": "selfsigned"},
    "spec": {"selfSigned": {}},
    "status": {"conditions": [{"type": "Ready", "status": "True"}]},
}


async def _install_cert_manager(mock: MockKubernetesApi) -> None:
    """Simulate the objects created by the cert-manager manifest."""
    await mock.create_namespace(
        V1Namespace(metadata=V1ObjectMeta(name="cert-manager"))
    )
    for name in ("cert-manager", "cert-manager-webhook"):
        deployment = V1Deployment(
            metadata=V1ObjectMeta(name=name),
            spec=V1DeploymentSpec(
                selector=V1LabelSelector(match_labels={"app": name}),
                template=V1PodTemplateSpec(),
            ),
            status=V1DeploymentStatus(available_replicas=1),
        )
        mock.add_object_for_test("cert-manager", deployment)

    # The webhook wait job succeeds as soon as it is created.
    async def succeed(job: V1Job) -> None:
        job.status = V1JobStatus(succeeded=1)

    mock.initial_pod_phase = "Succeeded"
    mock.register_create_hook_for_test("Job", succeed)


def test_builder() -> None:
    addon = CertManagerAddonBuilder().build()
    assert addon.name == "cert-manager"
    assert addon.version == semver.Version.parse(CERT_MANAGER_VERSION)

    addon = CertManagerAddonBuilder().with_version("v1.14.0").build()
    assert addon.version == semver.Version(1, 14, 0)
    assert addon.manifest_url == (
        "https://github.com/jetstack/cert-manager/releases/download"
        "/v1.14.0/cert-manager.yaml"
    )
    version = semver.Version(1, 13, 2)
    addon = CertManagerAddonBuilder().with_version(version).build()
    assert addon.version == version

    with pytest.raises(ConfigurationError, match="Invalid cert-manager"):
        CertManagerAddonBuilder().with_version("latest")


@pytest.mark.asyncio
async def test_deploy(
    cluster: FakeCluster,
    mock_kubernetes: MockKubernetesApi,
    mock_kubectl: MockKubectl,
) -> None:
    await _install_cert_manager(mock_kubernetes)
    await mock_kubernetes.create_cluster_custom_object(
        "cert-manager.io", "v1", "clusterissuers", ISSUER
    )
    addon = CertManagerAddonBuilder().with_version("1.14.0").build()
    timeout = Timeout("Test", timedelta(seconds=5))

    await cluster.deploy_addon(addon, timeout)
    assert [c[0] for c in mock_kubectl.calls] == ["apply_url", "apply"]
    assert mock_kubectl.calls[0][1] == addon.manifest_url
    assert "kind: ClusterIssuer" in mock_kubectl.calls[1][1]
    job = await mock_kubernetes.read_namespaced_job(
        "cert-manager-webhook-wait", "cert-manager"
    )
    assert job.spec.template.spec.containers[0].command[0] == "curl"
    assert (await addon.ready(cluster, timeout)).ready

    diagnostics = await addon.dump_diagnostics(cluster, timeout)
    issuer = yaml.safe_load(diagnostics["clusterissuer.yaml"])
    assert issuer["metadata"]["name"] == "selfsigned"

    await cluster.delete_addon(addon, timeout)
    assert [c[0] for c in mock_kubectl.calls[2:]] == ["delete", "delete_url"]
    assert cluster.list_addons() == []
    jobs = await mock_kubernetes.list_namespaced_job("cert-manager")
    assert jobs.items == []


@pytest.mark.asyncio
async def test_ready_job_pending(
    cluster: FakeCluster,
    mock_kubernetes: MockKubernetesApi,
    mock_kubectl: MockKubectl,
) -> None:
    await _install_cert_manager(mock_kubernetes)
    addon = CertManagerAddonBuilder().build()
    timeout = Timeout("Test", timedelta(seconds=5))

    readiness = await addon.ready(cluster, timeout)
    job = "Job cert-manager/cert-manager-webhook-wait"
    assert readiness.pending() == [job]
    assert await addon.dump_diagnostics(cluster, timeout) == {}
