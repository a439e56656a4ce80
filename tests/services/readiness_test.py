"""Tests for readiness checks and polling."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from kubernetes_asyncio.client import (
    V1DaemonSet,
    V1DaemonSetStatus,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStatus,
    V1Job,
    V1JobSpec,
    V1JobStatus,
    V1LabelSelector,
    V1LoadBalancerIngress,
    V1LoadBalancerStatus,
    V1Namespace,
    V1ObjectMeta,
    V1PodTemplateSpec,
    V1Service,
    V1ServiceSpec,
    V1ServiceStatus,
)
from structlog.stdlib import get_logger

from ktf.exceptions import JobFailedError, OperationTimeoutError
from ktf.models.domain.kubernetes import Readiness
from ktf.services.readiness import ReadinessChecker, wait_for_readiness
from ktf.storage.kubernetes.custom import CustomStorage
from ktf.timeout import Timeout

from ..support.kubernetes import MockKubernetesApi


def _checker() -> ReadinessChecker:
    return ReadinessChecker(None, get_logger("ktf"))  # type: ignore[arg-type]


def _deployment(name: str, replicas: int, available: int) -> V1Deployment:
    return V1Deployment(
        metadata=V1ObjectMeta(name=name),
        spec=V1DeploymentSpec(
            replicas=replicas,
            selector=V1LabelSelector(match_labels={"app": name}),
            template=V1PodTemplateSpec(),
        ),
        status=V1DeploymentStatus(available_replicas=available),
    )


def _daemon_set(name: str, available: int) -> V1DaemonSet:
    return V1DaemonSet(
        metadata=V1ObjectMeta(name=name),
        status=V1DaemonSetStatus(
            current_number_scheduled=1,
            desired_number_scheduled=1,
            number_misscheduled=0,
            number_ready=available,
            number_available=available,
        ),
    )


async def _create_namespace(mock: MockKubernetesApi, name: str) -> None:
    await mock.create_namespace(V1Namespace(metadata=V1ObjectMeta(name=name)))


@pytest.mark.asyncio
async def test_deployment_replicas(mock_kubernetes: MockKubernetesApi) -> None:
    await _create_namespace(mock_kubernetes, "mesh")
    deployment = _deployment("control", 3, 2)
    mock_kubernetes.add_object_for_test("mesh", deployment)
    checker = _checker()
    timeout = Timeout("Test", timedelta(seconds=5))

    readiness = await checker.namespace("mesh", timeout)
    assert not readiness.ready
    assert readiness.pending() == ["Deployment mesh/control"]

    deployment.status.available_replicas = 3
    readiness = await checker.namespace("mesh", timeout)
    assert readiness.ready
    assert readiness.waiting == []


@pytest.mark.asyncio
async def test_namespace_missing(mock_kubernetes: MockKubernetesApi) -> None:
    readiness = await _checker().namespace(
        "missing", Timeout("Test", timedelta(seconds=5))
    )
    assert not readiness.ready
    assert readiness.pending() == ["Namespace missing"]


@pytest.mark.asyncio
async def test_namespace_empty(mock_kubernetes: MockKubernetesApi) -> None:
    await _create_namespace(mock_kubernetes, "empty")
    readiness = await _checker().namespace(
        "empty", Timeout("Test", timedelta(seconds=5))
    )
    assert not readiness.ready
    assert readiness.pending() == ["Namespace empty"]


@pytest.mark.asyncio
async def test_namespace_workloads(mock_kubernetes: MockKubernetesApi) -> None:
    await _create_namespace(mock_kubernetes, "ingress")
    daemon_set = _daemon_set("proxy", 0)
    mock_kubernetes.add_object_for_test("ingress", daemon_set)
    service = V1Service(
        metadata=V1ObjectMeta(name="proxy"),
        spec=V1ServiceSpec(type="LoadBalancer"),
        status=V1ServiceStatus(load_balancer=V1LoadBalancerStatus()),
    )
    mock_kubernetes.add_object_for_test("ingress", service)
    checker = _checker()
    timeout = Timeout("Test", timedelta(seconds=5))

    readiness = await checker.namespace("ingress", timeout)
    assert readiness.pending() == [
        "DaemonSet ingress/proxy",
        "Service ingress/proxy",
    ]

    daemon_set.status.number_available = 1
    readiness = await checker.namespace("ingress", timeout)
    assert readiness.pending() == ["Service ingress/proxy"]

    ingress = V1LoadBalancerIngress(ip="10.0.0.1")
    service.status.load_balancer.ingress = [ingress]
    readiness = await checker.namespace("ingress", timeout)
    assert readiness.ready


@pytest.mark.asyncio
async def test_kube_system(mock_kubernetes: MockKubernetesApi) -> None:
    checker = _checker()
    timeout = Timeout("Test", timedelta(seconds=5))
    assert (await checker.kube_system(timeout)).ready

    mock_kubernetes.add_object_for_test(
        "kube-system", _deployment("coredns", 2, 1)
    )
    daemon_set = _daemon_set("kube-proxy", 1)
    daemon_set.status.number_unavailable = 1
    mock_kubernetes.add_object_for_test("kube-system", daemon_set)
    readiness = await checker.kube_system(timeout)
    assert readiness.pending() == [
        "Deployment kube-system/coredns",
        "DaemonSet kube-system/kube-proxy",
    ]


@pytest.mark.asyncio
async def test_job(mock_kubernetes: MockKubernetesApi) -> None:
    checker = _checker()
    timeout = Timeout("Test", timedelta(seconds=5))
    readiness = await checker.job("wait", "apps", timeout)
    assert readiness.pending() == ["Job apps/wait"]

    job = V1Job(
        metadata=V1ObjectMeta(name="wait"),
        spec=V1JobSpec(backoff_limit=2, template=V1PodTemplateSpec()),
        status=V1JobStatus(failed=1),
    )
    mock_kubernetes.add_object_for_test("apps", job)
    assert not (await checker.job("wait", "apps", timeout)).ready

    job.status.succeeded = 1
    assert (await checker.job("wait", "apps", timeout)).ready

    job.status.succeeded = None
    job.status.failed = 3
    with pytest.raises(JobFailedError):
        await checker.job("wait", "apps", timeout)


@pytest.mark.asyncio
async def test_condition(mock_kubernetes: MockKubernetesApi) -> None:
    storage = CustomStorage(
        api_client=None,  # type: ignore[arg-type]
        group="cert-manager.io",
        version="v1",
        plural="clusterissuers",
        kind="ClusterIssuer",
        logger=get_logger("ktf"),
    )
    checker = _checker()
    timeout = Timeout("Test", timedelta(seconds=5))
    api_version = "cert-manager.io/v1"

    readiness = await checker.condition(
        storage, "selfsigned", "Ready", timeout, api_version=api_version
    )
    assert readiness.pending() == ["ClusterIssuer selfsigned"]

    issuer = {
        "apiVersion": api_version,
        "kind": "ClusterIssuer",
        "metadata": {"name": "selfsigned"},
        "status": {"conditions": [{"type": "Ready", "status": "False"}]},
    }
    await storage.create(issuer, timeout)
    readiness = await checker.condition(
        storage, "selfsigned", "Ready", timeout, api_version=api_version
    )
    assert not readiness.ready

    issuer["status"]["conditions"][0]["status"] = "True"
    readiness = await checker.condition(
        storage, "selfsigned", "Ready", timeout, api_version=api_version
    )
    assert readiness.ready


@pytest.mark.asyncio
async def test_wait_for_readiness(mock_kubernetes: MockKubernetesApi) -> None:
    await _create_namespace(mock_kubernetes, "mesh")
    deployment = _deployment("control", 3, 2)
    mock_kubernetes.add_object_for_test("mesh", deployment)
    checker = _checker()
    logger = get_logger("ktf")

    async def scale_up() -> None:
        await asyncio.sleep(0.3)
        deployment.status.available_replicas = 3

    task = asyncio.create_task(scale_up())
    timeout = Timeout("Waiting for mesh", timedelta(seconds=5))
    await wait_for_readiness(
        lambda t: checker.namespace("mesh", t),
        timeout,
        interval=timedelta(milliseconds=100),
        logger=logger,
    )
    await task
    assert timeout.elapsed() >= 0.3


@pytest.mark.asyncio
async def test_wait_timeout(mock_kubernetes: MockKubernetesApi) -> None:
    checker = _checker()
    timeout = Timeout("Waiting for mesh", timedelta(milliseconds=300))
    with pytest.raises(OperationTimeoutError) as excinfo:
        await wait_for_readiness(
            lambda t: checker.namespace("mesh", t),
            timeout,
            interval=timedelta(milliseconds=50),
            logger=get_logger("ktf"),
        )
    assert excinfo.value.operation == "Waiting for mesh"
    assert excinfo.value.pending == ["Namespace mesh"]


@pytest.mark.asyncio
async def test_wait_expired(mock_kubernetes: MockKubernetesApi) -> None:
    checks = 0

    async def check(timeout: Timeout) -> Readiness:
        nonlocal checks
        checks += 1
        return Readiness.converged()

    timeout = Timeout("Already expired", timedelta(seconds=0))
    with pytest.raises(OperationTimeoutError):
        await wait_for_readiness(check, timeout, logger=get_logger("ktf"))
    assert checks == 0


@pytest.mark.asyncio
async def test_wait_error(mock_kubernetes: MockKubernetesApi) -> None:
    checks = 0

    async def check(timeout: Timeout) -> Readiness:
        nonlocal checks
        checks += 1
        raise JobFailedError("wait", "apps", 7)

    timeout = Timeout("Test", timedelta(seconds=5))
    with pytest.raises(JobFailedError):
        await wait_for_readiness(check, timeout, logger=get_logger("ktf"))
    assert checks == 1


@pytest.mark.asyncio
async def test_wait_cancelled(mock_kubernetes: MockKubernetesApi) -> None:
    checks = 0

    async def check(timeout: Timeout) -> Readiness:
        nonlocal checks
        checks += 1
        return Readiness.blocked([])

    task = asyncio.create_task(
        wait_for_readiness(
            check,
            Timeout("Test", None),
            interval=timedelta(seconds=10),
            logger=get_logger("ktf"),
        )
    )
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert checks == 1
