"""Tests for dumping cluster diagnostics."""

from __future__ import annotations

import tempfile
from datetime import timedelta
from pathlib import Path

import pytest
from kubernetes_asyncio.client import (
    V1Container,
    V1Namespace,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
)

from ktf.timeout import Timeout

from ..support.addons import FakeAddon
from ..support.cluster import FakeCluster
from ..support.kubernetes import MockKubernetesApi


def _pod(name: str, containers: list[str]) -> V1Pod:
    return V1Pod(
        metadata=V1ObjectMeta(name=name),
        spec=V1PodSpec(containers=[V1Container(name=c) for c in containers]),
    )


@pytest.mark.asyncio
async def test_dump(
    cluster: FakeCluster,
    mock_kubernetes: MockKubernetesApi,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    await mock_kubernetes.create_namespace(
        V1Namespace(metadata=V1ObjectMeta(name="apps"))
    )
    await mock_kubernetes.create_namespaced_pod(
        "apps", _pod("web", ["app", "proxy"])
    )
    await mock_kubernetes.create_namespaced_pod(
        "apps", _pod("broken", ["app"])
    )
    mock_kubernetes.pod_logs[("apps", "web", "app")] = "app started\n"
    mock_kubernetes.pod_logs[("apps", "web", "proxy")] = "proxy started\n"

    timeout = Timeout("Test", timedelta(seconds=5))
    diagnostics = {"status.txt": b"all good\n"}
    await cluster.deploy_addon(
        FakeAddon("mesh", diagnostics=diagnostics), timeout
    )
    await cluster.deploy_addon(FakeAddon("quiet"), timeout)
    await cluster.deploy_addon(
        FakeAddon("failing", diagnostics=RuntimeError("no access")), timeout
    )

    output = await cluster.dump_diagnostics(timeout, meta="TestDump")
    assert output.parent == tmp_path
    assert output.name.startswith("ktf-diag-")
    assert (output / "meta.txt").read_text() == "TestDump"

    web = (output / "pod_logs" / "apps_web").read_text()
    assert web == "==> app <==\napp started\n\n==> proxy <==\nproxy started\n"
    assert not (output / "pod_logs" / "apps_broken").exists()
    failures = (output / "pod_logs_failures.txt").read_text()
    assert failures.startswith("apps/broken: ")

    status = output / "addons" / "mesh" / "status.txt"
    assert status.read_bytes() == b"all good\n"
    assert not (output / "addons" / "quiet").exists()
    failures = (output / "addon_failures.txt").read_text()
    assert failures == "failing: no access\n"


@pytest.mark.asyncio
async def test_dump_empty(
    cluster: FakeCluster,
    mock_kubernetes: MockKubernetesApi,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    timeout = Timeout("Test", timedelta(seconds=5))
    output = await cluster.dump_diagnostics(timeout)
    assert sorted(p.name for p in output.iterdir()) == ["meta.txt", "pod_logs"]
    assert (output / "meta.txt").read_text() == ""
