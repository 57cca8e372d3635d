"""Demo-mode transport that synthesizes readings for a fixed set of channels.

Each channel profile runs as its own asyncio task at its own rate, so the
UI sees the same mix of fast bursts, slow updates, occasional outliers and a
channel that goes silent that a real deployment produces.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import numpy as np

from .domain_models import ChannelDefaults
from .transport import Transport, TransportCallbacks

LOGGER = logging.getLogger(__name__)

SIMULATION_DEVICE_LABEL = "Simulation Node"
FALLBACK_DEVICE_LABEL = "Demo Node (Fallback)"

_DEFAULT_CONNECT_DELAY_S = 0.8
_DEFAULT_SPIKE_PROBABILITY = 0.05
_DEFAULT_HUMIDITY_DROPOUT_S = 60.0


@dataclass(frozen=True, slots=True)
class ChannelProfile:
    channel_id: str
    name: str
    unit: str
    interval_s: float
    low: float
    high: float
    spike_value: float | None = None
    dropout_after_s: float | None = None

    @property
    def defaults(self) -> ChannelDefaults:
        return ChannelDefaults(name=self.name, unit=self.unit)


def default_profiles(
    *,
    humidity_dropout_s: float | None = _DEFAULT_HUMIDITY_DROPOUT_S,
) -> tuple[ChannelProfile, ...]:
    return (
        ChannelProfile("temp", "Temperature", "°C", 2.0, 24.0, 26.0, spike_value=9999.0),
        ChannelProfile(
            "hum", "Humidity", "%", 5.0, 40.0, 50.0, dropout_after_s=humidity_dropout_s
        ),
        ChannelProfile("accel", "Accelerometer", "g", 0.05, -0.5, 0.5),
    )


class SimulatedTransport(Transport):
    def __init__(
        self,
        callbacks: TransportCallbacks,
        *,
        profiles: tuple[ChannelProfile, ...] | None = None,
        connect_delay_s: float = _DEFAULT_CONNECT_DELAY_S,
        spike_probability: float = _DEFAULT_SPIKE_PROBABILITY,
        fallback: bool = False,
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(callbacks)
        self.profiles = profiles if profiles is not None else default_profiles()
        self.connect_delay_s = max(0.0, float(connect_delay_s))
        self.spike_probability = min(1.0, max(0.0, float(spike_probability)))
        self.fallback = fallback
        self._rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []
        self._started_at: float | None = None

    @property
    def demo_mode(self) -> bool:
        return True

    @property
    def device_label(self) -> str:
        return FALLBACK_DEVICE_LABEL if self.fallback else SIMULATION_DEVICE_LABEL

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def channel_defaults(self) -> Mapping[str, ChannelDefaults]:
        return {profile.channel_id: profile.defaults for profile in self.profiles}

    def sample(self, profile: ChannelProfile) -> float:
        value = float(self._rng.uniform(profile.low, profile.high))
        if profile.spike_value is not None and self._rng.random() < self.spike_probability:
            return profile.spike_value
        return value

    async def connect(self) -> str:
        await self.disconnect()
        if self.connect_delay_s:
            await asyncio.sleep(self.connect_delay_s)
        self._started_at = self._clock()
        self._tasks = [
            asyncio.create_task(self._run_profile(profile), name=f"sim-{profile.channel_id}")
            for profile in self.profiles
        ]
        LOGGER.info(
            "Simulation started (%s) with channels: %s",
            self.device_label,
            ", ".join(profile.channel_id for profile in self.profiles),
        )
        return self.device_label

    async def disconnect(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._started_at = None

    async def _run_profile(self, profile: ChannelProfile) -> None:
        started_at = self._started_at if self._started_at is not None else self._clock()
        while True:
            await asyncio.sleep(profile.interval_s)
            if (
                profile.dropout_after_s is not None
                and self._clock() - started_at > profile.dropout_after_s
            ):
                LOGGER.info("Simulated channel %s dropped out", profile.channel_id)
                try:
                    self.callbacks.on_channel_dropout(profile.channel_id)
                except Exception:
                    LOGGER.warning(
                        "Dropout handler for %s failed", profile.channel_id, exc_info=True
                    )
                return
            try:
                self.callbacks.on_data(profile.channel_id, repr(self.sample(profile)))
            except Exception:
                LOGGER.warning(
                    "Simulated reading for %s failed", profile.channel_id, exc_info=True
                )
