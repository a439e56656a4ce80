"""Test fixtures for ktf tests."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import timedelta

import pytest

from ktf.config import Config
from ktf.storage.kubectl import Kubectl

from .support.cluster import FakeCluster, build_fake_cluster
from .support.kubectl import MockKubectl
from .support.kubernetes import MockKubernetesApi, patch_kubernetes


@pytest.fixture
def config() -> Config:
    """Construct configuration for tests, with short retry delays."""
    return Config(conflict_retry_delay=timedelta(milliseconds=10))


@pytest.fixture
def cluster(config: Config, mock_kubernetes: MockKubernetesApi) -> FakeCluster:
    return build_fake_cluster("test", config)


@pytest.fixture
def mock_kubectl(monkeypatch: pytest.MonkeyPatch) -> MockKubectl:
    mock = MockKubectl()
    monkeypatch.setattr(Kubectl, "apply", mock.apply)
    monkeypatch.setattr(Kubectl, "apply_url", mock.apply_url)
    monkeypatch.setattr(Kubectl, "delete", mock.delete)
    monkeypatch.setattr(Kubectl, "delete_url", mock.delete_url)
    return mock


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    with patch_kubernetes() as mock:
        yield mock
