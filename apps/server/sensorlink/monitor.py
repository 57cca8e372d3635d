from __future__ import annotations

import asyncio
import logging

from .constants import MONITOR_INTERVAL_MS, MS_PER_SECOND, STALE_THRESHOLD_MS
from .domain_models import ChannelStatus
from .store import SessionDraft, SessionStore

LOGGER = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 10
"""After this many failed sweeps in a row, log at ERROR and back off."""

FAILURE_BACKOFF_S = 30.0
"""Seconds to sleep once the failure threshold is hit."""


class StalenessMonitor:
    """Periodic sweep that turns silent ``active`` channels ``stale``.

    Only the ``active -> stale`` edge lives here.  Readings bring a channel
    back to ``active`` through the registry, and ``inactive`` is set by
    explicit dropout events only.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        stale_threshold_ms: int = STALE_THRESHOLD_MS,
        monitor_interval_ms: int = MONITOR_INTERVAL_MS,
    ):
        self.store = store
        self.stale_threshold_s = max(0.0, stale_threshold_ms / MS_PER_SECOND)
        self.interval_s = max(0.01, monitor_interval_ms / MS_PER_SECOND)
        self._task: asyncio.Task[None] | None = None
        self.sweep_count = 0
        self.failure_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: float | None = None) -> list[str]:
        """Run one batch sweep and return the ids that went stale."""

        def _sweep(draft: SessionDraft) -> list[str]:
            ts = draft.now if now is None else now
            went_stale: list[str] = []
            for channel in draft.channels:
                if channel.status is not ChannelStatus.active:
                    continue
                if ts - channel.staleness_reference > self.stale_threshold_s:
                    draft.channels.mark_stale(channel.id)
                    went_stale.append(channel.id)
            return went_stale

        went_stale = self.store.mutate(_sweep)
        self.sweep_count += 1
        if went_stale:
            LOGGER.info("Channels went stale: %s", ", ".join(went_stale))
        return went_stale

    async def run(self) -> None:
        consecutive_failures = 0
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.sweep()
                consecutive_failures = 0
            except Exception:
                consecutive_failures += 1
                self.failure_count += 1
                LOGGER.warning("Staleness sweep failed; will retry.", exc_info=True)
                if consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                    LOGGER.error(
                        "Staleness monitor hit %d failures; backing off %.0f s",
                        MAX_CONSECUTIVE_FAILURES,
                        FAILURE_BACKOFF_S,
                    )
                    await asyncio.sleep(FAILURE_BACKOFF_S)
                    consecutive_failures = 0

    def start(self) -> asyncio.Task[None]:
        """(Re)start the sweep loop; any previous loop is cancelled first."""
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.create_task(self.run(), name="staleness-monitor")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
