"""Tests for the configuration."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel

from ktf.config import Config
from ktf.constants import CLEANUP_CONCURRENCY, POLL_INTERVAL


def test_defaults() -> None:
    config = Config()
    assert config.poll_interval == POLL_INTERVAL
    assert config.cleanup_concurrency == CLEANUP_CONCURRENCY
    assert not config.keep_cluster
    assert not config.debug


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "ktf.yaml"
    path.write_text(
        "pollInterval: 1s\n"
        "cleanupConcurrency: 2\n"
        "conflictRetryDelay: 0.05\n"
        "logLevel: DEBUG\n"
    )
    config = Config.from_file(path)
    assert config.poll_interval == timedelta(seconds=1)
    assert config.cleanup_concurrency == 2
    assert config.conflict_retry_delay == timedelta(milliseconds=50)
    assert config.log_level == LogLevel.DEBUG


def test_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "ktf.yaml"
    path.write_text("")
    config = Config.from_file(path)
    assert config.poll_interval == POLL_INTERVAL


def test_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "ktf.yaml"
    path.write_text("cleanupConcurrency: 2\n")
    monkeypatch.setenv("KTF_CLEANUP_CONCURRENCY", "4")
    monkeypatch.setenv("KIND_KEEP_CLUSTER", "true")
    config = Config.from_file(path)
    assert config.cleanup_concurrency == 4
    assert config.keep_cluster


def test_invalid(tmp_path: Path) -> None:
    path = tmp_path / "ktf.yaml"
    path.write_text("cleanupConcurrency: 0\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)
