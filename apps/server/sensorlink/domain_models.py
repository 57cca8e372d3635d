"""Domain model objects for the SensorLink session state.

All records here are immutable.  The store replaces them wholesale on every
committed mutation, so a reference obtained from a snapshot never changes
underneath its holder.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .history import HistoryView


class ChannelStatus(enum.StrEnum):
    active = "active"
    stale = "stale"
    inactive = "inactive"


class ConnectionState(enum.StrEnum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"


def iso_utc(ts: float) -> str:
    """Format epoch seconds as ISO-8601 UTC with millisecond precision."""
    text = datetime.fromtimestamp(ts, UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# 1) Channel
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChannelDefaults:
    """Display metadata used when a channel is first provisioned."""

    name: str
    unit: str = ""


@dataclass(frozen=True, slots=True)
class Channel:
    id: str
    name: str
    unit: str
    registered_at: float
    current_value: float | None = None
    last_updated: float | None = None
    status: ChannelStatus = ChannelStatus.active

    @property
    def staleness_reference(self) -> float:
        """Timestamp silence is measured from: last reading, else registration."""
        return self.last_updated if self.last_updated is not None else self.registered_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "current_value": self.current_value,
            "last_updated": iso_utc(self.last_updated) if self.last_updated is not None else None,
            "status": str(self.status),
        }


# ---------------------------------------------------------------------------
# 2) Reading
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Reading:
    sequence_id: int
    timestamp: float
    channel_id: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.sequence_id,
            "timestamp": iso_utc(self.timestamp),
            "parameter": self.channel_id,
            "value": self.value,
        }


# ---------------------------------------------------------------------------
# 3) SessionSnapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    connection_state: ConnectionState
    demo_mode: bool
    device_label: str | None
    last_error: str | None
    channels: Mapping[str, Channel]
    readings: HistoryView
    session_started_at: float
    version: int = 0
    parse_warnings: int = 0

    @property
    def is_connected(self) -> bool:
        return self.connection_state is ConnectionState.connected

    def channel_name(self, channel_id: str) -> str:
        channel = self.channels.get(channel_id)
        return channel.name if channel is not None else channel_id

    def channel_unit(self, channel_id: str) -> str:
        channel = self.channels.get(channel_id)
        return channel.unit if channel is not None else ""

    def to_dict(self, *, window: int | None = None) -> dict[str, Any]:
        """Serialize for the API.

        With *window* set, readings are limited to the latest *window* per
        channel instead of the whole rolling history.
        """
        if window is None:
            readings = [r.to_dict() for r in self.readings]
        else:
            readings = [
                r.to_dict()
                for channel_id in self.channels
                for r in self.readings.for_channel(channel_id, limit=window)
            ]
        return {
            "version": self.version,
            "connection_state": str(self.connection_state),
            "demo_mode": self.demo_mode,
            "device_label": self.device_label,
            "last_error": self.last_error,
            "session_started_at": iso_utc(self.session_started_at),
            "parse_warnings": self.parse_warnings,
            "channels": [c.to_dict() for c in self.channels.values()],
            "readings": readings,
        }


# ---------------------------------------------------------------------------
# 4) SessionRecord (hand-off to the persistence sink)
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SessionRecord:
    device_name: str
    start_time: float
    end_time: float
    data_points: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: SessionSnapshot,
        end_time: float,
        *,
        device_name: str | None = None,
    ) -> SessionRecord:
        return cls(
            device_name=device_name or snapshot.device_label or "Unknown Device",
            start_time=snapshot.session_started_at,
            end_time=end_time,
            data_points=[
                {
                    **r.to_dict(),
                    "name": snapshot.channel_name(r.channel_id),
                    "unit": snapshot.channel_unit(r.channel_id),
                }
                for r in snapshot.readings
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_name": self.device_name,
            "start_time": iso_utc(self.start_time),
            "end_time": iso_utc(self.end_time),
            "data_points": list(self.data_points),
        }
