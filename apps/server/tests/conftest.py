"""Shared test helpers for the sensorlink test suite."""

from __future__ import annotations

import asyncio
import os
import time

import pytest

os.environ.setdefault("SENSORLINK_DISABLE_AUTO_APP", "1")

from sensorlink.ingest import IngestionPipeline  # noqa: E402
from sensorlink.store import SessionStore  # noqa: E402

START_TS = 1_700_000_000.0
"""2023-11-14T22:13:20Z, a whole second so derived timestamps stay exact."""


def wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, or *timeout_s* expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step_s)
    return False


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.01) -> bool:
    """Async version of :func:`wait_until`; yields to the event loop between polls."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


class FakeClock:
    """Manually advanced wall clock, injected as ``SessionStore(clock=...)``."""

    def __init__(self, start: float = START_TS) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(clock=clock)


@pytest.fixture
def pipeline(store: SessionStore) -> IngestionPipeline:
    return IngestionPipeline(store)
