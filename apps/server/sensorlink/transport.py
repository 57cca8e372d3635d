"""Transport boundary: where raw sensor events enter the process.

A transport owns every task and socket it opens.  ``disconnect()`` must
cancel all of them and be safe to call any number of times, including
before ``connect()``.
"""

from __future__ import annotations

import abc
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .domain_models import ChannelDefaults

DataCallback = Callable[[str | None, bytes | str], None]
DisconnectedCallback = Callable[[], None]
DropoutCallback = Callable[[str], None]


def _ignore_dropout(_channel_id: str) -> None:
    return None


@dataclass(frozen=True, slots=True)
class TransportCallbacks:
    on_data: DataCallback
    on_disconnected: DisconnectedCallback
    on_channel_dropout: DropoutCallback = _ignore_dropout


class Transport(abc.ABC):
    def __init__(self, callbacks: TransportCallbacks):
        self.callbacks = callbacks

    @property
    def demo_mode(self) -> bool:
        return False

    @abc.abstractmethod
    async def connect(self) -> str:
        """Open the link and return the device label.

        Raises :class:`~sensorlink.errors.TransportError` on failure.
        """

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Close the link.  Idempotent."""

    def channel_defaults(self) -> Mapping[str, ChannelDefaults]:
        """Display metadata of channels this transport is known to emit."""
        return {}
