"""
Shared pytest fixtures for podrun tests.

This module provides:
- Environment isolation (no PODRUN_* variables leak into settings)
- A settings instance whose storage lives under ``tmp_path``
- A fake monotonic clock so polling tests never sleep
- Stub scheduler client, poller and coordinator wired together

Usage:
    def test_something(coordinator, stub_client):
        stub_client.script("wf-1", ["Pending", "Succeeded"])
        ...
"""

from __future__ import annotations

import os

import pytest

from podrun.core.settings import PodrunSettings
from podrun.execution.coordinator import LifecycleCoordinator
from podrun.execution.poller import CompletionPoller
from podrun.execution.scheduler import StubSchedulerClient


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Drop PODRUN_* variables from the environment for every test."""
    for key in list(os.environ):
        if key.startswith("PODRUN_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def settings(tmp_path) -> PodrunSettings:
    return PodrunSettings(
        _env_file=None,
        namespace="podrun-test",
        worker_identity="worker-0",
        storage_base_path=tmp_path / "jobs",
        poll_interval_seconds=5,
    )


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def stub_client() -> StubSchedulerClient:
    return StubSchedulerClient(namespace="podrun-test")


@pytest.fixture()
def poller(stub_client, fake_clock) -> CompletionPoller:
    return CompletionPoller(stub_client, interval=5, clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture()
def coordinator(settings, stub_client, poller) -> LifecycleCoordinator:
    return LifecycleCoordinator(settings, stub_client, poller=poller)
