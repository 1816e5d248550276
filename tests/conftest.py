"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest

from actionflow.orchestration.hooks import InMemoryHookSink, RunHooks


@pytest.fixture(autouse=True)
def _debug_logging(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="actionflow")


@pytest.fixture
def hook_sink() -> InMemoryHookSink:
    return InMemoryHookSink()


@pytest.fixture
def recording_hooks(hook_sink: InMemoryHookSink) -> RunHooks:
    return RunHooks.recording(hook_sink)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
