"""Shared pytest fixtures for kubekite tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from kubekite.lifecycle import Lifecycle

CONFIG_ENV_VARS = (
    "BUILDKITE_API_TOKEN",
    "BUILDKITE_ORG",
    "BUILDKITE_QUEUE",
    "BUILDKITE_API_URL",
    "KUBECONFIG",
    "KUBE_NAMESPACE",
    "KUBE_TIMEOUT",
    "JOB_TEMPLATE",
    "JOB_MAPPING",
    "KUBEKITE_POLL_INTERVAL",
    "KUBEKITE_QUEUE_CAPACITY",
    "KUBEKITE_LOG_LEVEL",
    "KUBEKITE_LOG_JSON",
    "KUBEKITE_DEBUG",
    "KUBEKITE_DIAGNOSTIC_TAGS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Remove kubekite settings from the environment and run in an empty directory."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def lifecycle() -> Generator[Lifecycle, None, None]:
    """A Lifecycle that is always cancelled and drained after the test."""
    lc = Lifecycle()
    yield lc
    lc.drain(timeout=5.0)
