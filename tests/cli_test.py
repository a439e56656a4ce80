"""Tests for the command-line interface."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from click.testing import CliRunner

from ktf.cli import main
from ktf.clusters.kind import KindCluster
from ktf.services.environment import EnvironmentBuilder
from ktf.timeout import Timeout


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("KTF_CONFIG_FILE", raising=False)
    monkeypatch.delenv("KTF_ALERT_HOOK", raising=False)


def test_help() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["help"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Commands:" in result.output

    result = runner.invoke(main, ["help", "environments"])
    assert result.exit_code == 0
    assert "create" in result.output

    result = runner.invoke(main, ["help", "environments", "create"])
    assert result.exit_code == 0
    assert "--kubernetes-version" in result.output


def test_create(monkeypatch: pytest.MonkeyPatch) -> None:
    builders: list[EnvironmentBuilder] = []
    environment = Mock()
    environment.name = "test-env"
    environment.wait_for_ready = AsyncMock()

    async def build(self: EnvironmentBuilder, timeout: Timeout) -> Any:
        builders.append(self)
        return environment

    monkeypatch.setattr(EnvironmentBuilder, "build", build)
    runner = CliRunner()
    result = runner.invoke(
        main,
        [
            "environments",
            "create",
            "--name",
            "test-env",
            "--addon",
            "cert-manager",
            "--kubernetes-version",
            "v1.30.2",
        ],
        catch_exceptions=False,
    )
    assert result.exit_code == 0
    assert "Environment test-env is ready" in result.output
    assert len(builders) == 1
    assert [a.name for a in builders[0]._addons.values()] == ["cert-manager"]
    environment.wait_for_ready.assert_awaited_once()

    result = runner.invoke(
        main, ["environments", "create", "--kubernetes-version", "latest"]
    )
    assert result.exit_code != 0
    assert "Invalid Kubernetes version latest" in result.output


def test_delete(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / "ktf.yaml").write_text("keepCluster: true\n")
    monkeypatch.setenv("KIND_KEEP_CLUSTER", "true")
    cluster = Mock()
    cluster.cleanup = AsyncMock()
    from_existing = AsyncMock(return_value=cluster)
    monkeypatch.setattr(KindCluster, "from_existing", from_existing)

    runner = CliRunner()
    result = runner.invoke(
        main,
        ["environments", "delete", "--name", "test-env", "-t", "1m"],
        catch_exceptions=False,
    )
    assert result.exit_code == 0
    assert "Environment test-env deleted" in result.output
    config = from_existing.await_args.kwargs["config"]
    assert not config.keep_cluster
    cluster.cleanup.assert_awaited_once()
