from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import replace

from .domain_models import Channel, ChannelDefaults, ChannelStatus

LOGGER = logging.getLogger(__name__)

MAX_CHANNEL_ID_BYTES = 64
"""Channel ids and names are cut to this many UTF-8 bytes."""

_MAX_NAME_BYTES = MAX_CHANNEL_ID_BYTES
_MAX_UNIT_BYTES = 16


def _sanitize_label(text: str, max_bytes: int) -> str:
    # Strip control characters (U+0000 to U+001F, U+007F)
    clean = "".join(c for c in str(text) if ord(c) >= 0x20 and ord(c) != 0x7F).strip()
    return clean.encode("utf-8", errors="ignore")[:max_bytes].decode("utf-8", errors="ignore")


def normalize_channel_id(channel_id: str, max_bytes: int = MAX_CHANNEL_ID_BYTES) -> str:
    """Return the canonical channel id or raise ``ValueError`` if unusable."""
    clean = _sanitize_label(channel_id, max_bytes)
    if not clean:
        raise ValueError(f"Invalid channel id: {channel_id!r}")
    return clean


class ChannelRegistry:
    """Channel table of one store draft.

    Every operation writes a replacement :class:`Channel` into the draft's
    dict and flags :attr:`changed` only when a field actually differs, so
    mutations that end up as no-ops are not published.  Channels are never
    removed within a session.
    """

    def __init__(self, channels: Mapping[str, Channel]):
        self._channels: dict[str, Channel] = dict(channels)
        self.changed = False

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._channels

    def __iter__(self) -> Iterator[Channel]:
        return iter(list(self._channels.values()))

    def __len__(self) -> int:
        return len(self._channels)

    def get(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    def as_dict(self) -> dict[str, Channel]:
        return dict(self._channels)

    def _put(self, channel: Channel) -> Channel:
        if self._channels.get(channel.id) != channel:
            self._channels[channel.id] = channel
            self.changed = True
        return channel

    def upsert(
        self,
        channel_id: str,
        defaults: ChannelDefaults | None = None,
        *,
        now: float,
    ) -> Channel:
        """Create *channel_id* with *defaults* if absent; return the entry."""
        normalized = normalize_channel_id(channel_id)
        existing = self._channels.get(normalized)
        if existing is not None:
            return existing
        name = _sanitize_label(defaults.name, _MAX_NAME_BYTES) if defaults else ""
        unit = _sanitize_label(defaults.unit, _MAX_UNIT_BYTES) if defaults else ""
        if defaults is None:
            LOGGER.info("Auto-provisioning channel %r on first reading", normalized)
        return self._put(
            Channel(
                id=normalized,
                name=name or normalized,
                unit=unit,
                registered_at=now,
            )
        )

    def apply_reading(self, channel_id: str, value: float, now: float) -> Channel:
        """Record *value* and mark the channel active.

        Unknown channels are provisioned on first write.  An inactive channel
        keeps its status for the rest of the session; its value is still
        recorded.
        """
        channel = self.upsert(channel_id, now=now)
        status = (
            ChannelStatus.inactive
            if channel.status is ChannelStatus.inactive
            else ChannelStatus.active
        )
        return self._put(replace(channel, current_value=value, last_updated=now, status=status))

    def mark_inactive(self, channel_id: str, *, now: float) -> Channel:
        channel = self.upsert(channel_id, now=now)
        return self._put(replace(channel, status=ChannelStatus.inactive))

    def mark_stale(self, channel_id: str) -> Channel | None:
        channel = self._channels.get(channel_id)
        if channel is None or channel.status is not ChannelStatus.active:
            return channel
        return self._put(replace(channel, status=ChannelStatus.stale))

    def clear_readings(self, now: float) -> None:
        """Keep definitions, forget values: used when a session restarts."""
        for channel in list(self._channels.values()):
            self._put(
                replace(
                    channel,
                    current_value=None,
                    last_updated=now,
                    status=ChannelStatus.active,
                )
            )
