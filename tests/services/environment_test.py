"""Tests for building environments."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import semver
from kubernetes_asyncio.client import (
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStatus,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodTemplateSpec,
)

from ktf.config import Config
from ktf.exceptions import (
    AddonDeploymentError,
    ConfigurationError,
    DependencyCycleError,
    OperationTimeoutError,
)
from ktf.services.environment import EnvironmentBuilder
from ktf.timeout import Timeout

from ..support.addons import FakeAddon
from ..support.cluster import FakeCluster, build_fake_cluster
from ..support.kubernetes import MockKubernetesApi


class FakeClusterBuilder:
    """Cluster builder that hands out a fake cluster."""

    def __init__(self, config: Config) -> None:
        self.cluster = build_fake_cluster("built", config)
        self.builds = 0

    async def build(self, timeout: Timeout) -> FakeCluster:
        self.builds += 1
        return self.cluster


@pytest.mark.asyncio
async def test_validation(cluster: FakeCluster, config: Config) -> None:
    builder = FakeClusterBuilder(config)
    version = semver.Version(1, 30, 0)
    timeout = Timeout("Test", timedelta(seconds=5))
    invalid = [
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_cluster_builder(builder),
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_kubernetes_version(version),
        EnvironmentBuilder()
        .with_cluster_builder(builder)
        .with_kubernetes_version(version),
        EnvironmentBuilder().with_existing_cluster(cluster).with_ipv6_only(),
        EnvironmentBuilder().with_cluster_builder(builder).with_ipv6_only(),
    ]
    for environment_builder in invalid:
        with pytest.raises(ConfigurationError):
            await environment_builder.build(timeout)
    assert builder.builds == 0


@pytest.mark.asyncio
async def test_build(cluster: FakeCluster) -> None:
    cluster.config.poll_interval = timedelta(milliseconds=50)
    issuer = FakeAddon("cert-issuer", ready_after=1)
    mesh = FakeAddon("mesh", dependencies=("cert-issuer",))
    ingress = FakeAddon("ingress")
    timeout = Timeout("Test", timedelta(seconds=5))
    environment = await (
        EnvironmentBuilder(config=cluster.config)
        .with_name("test-env")
        .with_existing_cluster(cluster)
        .with_addons(mesh, ingress, issuer)
        .build(timeout)
    )
    assert environment.name == "test-env"
    assert environment.cluster is cluster
    assert issuer.deployed
    assert mesh.deployed
    assert ingress.deployed
    assert issuer.deploy_started is not None
    assert mesh.deploy_started is not None
    assert mesh.deploy_started > issuer.deploy_started
    names = sorted(a.name for a in cluster.list_addons())
    assert names == ["cert-issuer", "ingress", "mesh"]

    await environment.cleanup(timeout)
    assert cluster.cleanups == 1


@pytest.mark.asyncio
async def test_missing_dependency(cluster: FakeCluster) -> None:
    mesh = FakeAddon("mesh", dependencies=("cert-issuer", "cert-manager"))
    registry = FakeAddon("registry", dependencies=("cert-manager",))
    builder = (
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_addons(mesh, registry)
    )
    with pytest.raises(ConfigurationError) as excinfo:
        await builder.build(Timeout("Test", timedelta(seconds=5)))
    assert "cert-issuer (needed by mesh)" in str(excinfo.value)
    assert "cert-manager (needed by mesh, registry)" in str(excinfo.value)
    assert not mesh.deployed
    assert cluster.list_addons() == []


@pytest.mark.asyncio
async def test_already_registered_dependency(cluster: FakeCluster) -> None:
    timeout = Timeout("Test", timedelta(seconds=5))
    issuer = FakeAddon("cert-issuer")
    await cluster.deploy_addon(issuer, timeout)
    mesh = FakeAddon("mesh", dependencies=("cert-issuer",))
    await (
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_addons(mesh)
        .build(timeout)
    )
    assert mesh.deployed


@pytest.mark.asyncio
async def test_cycle(cluster: FakeCluster) -> None:
    builder = (
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_addons(
            FakeAddon("one", dependencies=("two",)),
            FakeAddon("two", dependencies=("one",)),
        )
    )
    with pytest.raises(DependencyCycleError):
        await builder.build(Timeout("Test", timedelta(seconds=5)))


@pytest.mark.asyncio
async def test_failed_deploy(config: Config) -> None:
    cluster_builder = FakeClusterBuilder(config)
    broken = FakeAddon("broken", deploy_error=RuntimeError("no capacity"))
    fine = FakeAddon("fine", deploy_delay=0.05)
    dependent = FakeAddon("dependent", dependencies=("broken",))
    builder = (
        EnvironmentBuilder(config=config)
        .with_cluster_builder(cluster_builder)
        .with_addons(broken, fine, dependent)
    )
    with pytest.raises(AddonDeploymentError) as excinfo:
        await builder.build(Timeout("Test", timedelta(seconds=5)))
    assert excinfo.value.failures == {"broken": "no capacity"}
    assert fine.deployed
    assert dependent.deploy_started is None
    assert cluster_builder.builds == 1
    assert cluster_builder.cluster.cleanups == 1


@pytest.mark.asyncio
async def test_failed_deploy_existing(cluster: FakeCluster) -> None:
    broken = FakeAddon("broken", deploy_error=RuntimeError("no capacity"))
    builder = (
        EnvironmentBuilder().with_existing_cluster(cluster).with_addons(broken)
    )
    with pytest.raises(AddonDeploymentError):
        await builder.build(Timeout("Test", timedelta(seconds=5)))
    assert cluster.cleanups == 0


@pytest.mark.asyncio
async def test_ready(
    cluster: FakeCluster, mock_kubernetes: MockKubernetesApi
) -> None:
    timeout = Timeout("Test", timedelta(seconds=5))
    addon = FakeAddon("mesh", ready_after=1)
    environment = await (
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_addons(addon)
        .build(timeout)
    )
    coredns = V1Deployment(
        metadata=V1ObjectMeta(name="coredns"),
        spec=V1DeploymentSpec(
            replicas=2,
            selector=V1LabelSelector(match_labels={"k8s-app": "kube-dns"}),
            template=V1PodTemplateSpec(),
        ),
        status=V1DeploymentStatus(available_replicas=1),
    )
    mock_kubernetes.add_object_for_test("kube-system", coredns)

    readiness = await environment.ready(timeout)
    assert readiness.pending() == [
        "Deployment kube-system/coredns",
        "Deployment mesh/mesh",
    ]

    coredns.status.available_replicas = 2
    readiness = await environment.ready(timeout)
    assert readiness.ready


@pytest.mark.asyncio
async def test_wait_for_ready(
    cluster: FakeCluster, mock_kubernetes: MockKubernetesApi, tmp_path: Path
) -> None:
    cluster.config.poll_interval = timedelta(milliseconds=50)
    timeout = Timeout("Test", timedelta(seconds=5))
    ready_addon = FakeAddon("ready", ready_after=3)
    environment = await (
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_addons(ready_addon)
        .build(timeout)
    )
    await environment.wait_for_ready(timeout)
    assert ready_addon.ready_checks == 4

    dump = AsyncMock(return_value=tmp_path)
    cluster.dump_diagnostics = dump  # type: ignore[method-assign]
    await cluster.deploy_addon(FakeAddon("stuck", ready_after=1000), timeout)
    with pytest.raises(OperationTimeoutError) as excinfo:
        await environment.wait_for_ready(
            Timeout("Waiting", timedelta(milliseconds=300))
        )
    assert excinfo.value.pending == ["Deployment stuck/stuck"]
    dump.assert_awaited_once()
    assert dump.await_args.kwargs["meta"] == "WaitForReady"


@pytest.mark.asyncio
async def test_hung_diagnostics(
    cluster: FakeCluster, mock_kubernetes: MockKubernetesApi, tmp_path: Path
) -> None:
    cluster.config.poll_interval = timedelta(milliseconds=50)
    cluster.config.environment_hung_timeout = timedelta(milliseconds=100)
    timeout = Timeout("Test", timedelta(seconds=5))
    addon = FakeAddon("slow", ready_after=6)
    environment = await (
        EnvironmentBuilder()
        .with_existing_cluster(cluster)
        .with_addons(addon)
        .build(timeout)
    )
    dump = AsyncMock(return_value=tmp_path)
    cluster.dump_diagnostics = dump  # type: ignore[method-assign]
    await environment.wait_for_ready(timeout)
    dump.assert_awaited_once()
