"""Rolling history shared by all channels.

``RollingHistory`` is the mutable working buffer used inside a store
mutation; ``HistoryView`` is the immutable window published in a snapshot.

The backing list is append-only: eviction only advances the window start,
and compaction swaps in a *new* list once the dead prefix reaches the
capacity.  A published view therefore keeps seeing exactly the readings it
was created with while later mutations keep appending in O(1) amortized.

Eviction is FIFO across channels, so a fast channel can push a slow
channel's readings out of the window.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import overload

from .constants import HISTORY_CAPACITY
from .domain_models import Reading


class HistoryView(Sequence[Reading]):
    """Read-only window ``items[start:stop]`` over an append-only list."""

    __slots__ = ("_items", "_start", "_stop")

    def __init__(self, items: list[Reading], start: int, stop: int) -> None:
        self._items = items
        self._start = start
        self._stop = stop

    @classmethod
    def empty(cls) -> HistoryView:
        return cls([], 0, 0)

    def __len__(self) -> int:
        return self._stop - self._start

    @overload
    def __getitem__(self, index: int) -> Reading: ...

    @overload
    def __getitem__(self, index: slice) -> list[Reading]: ...

    def __getitem__(self, index: int | slice) -> Reading | list[Reading]:
        window = range(self._start, self._stop)
        if isinstance(index, slice):
            return [self._items[i] for i in window[index]]
        return self._items[window[index]]

    def __iter__(self) -> Iterator[Reading]:
        for i in range(self._start, self._stop):
            yield self._items[i]

    def __repr__(self) -> str:
        return f"HistoryView(len={len(self)})"

    @property
    def latest(self) -> Reading | None:
        return self._items[self._stop - 1] if self._stop > self._start else None

    def for_channel(self, channel_id: str, limit: int | None = None) -> list[Reading]:
        """Return readings of one channel in arrival order, newest *limit* only."""
        picked: list[Reading] = []
        for i in range(self._stop - 1, self._start - 1, -1):
            reading = self._items[i]
            if reading.channel_id != channel_id:
                continue
            picked.append(reading)
            if limit is not None and len(picked) >= limit:
                break
        picked.reverse()
        return picked


class RollingHistory:
    """Fixed-capacity FIFO of readings used as a mutation working copy."""

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        self.capacity = max(1, int(capacity))
        self._items: list[Reading] = []
        self._start = 0

    @classmethod
    def from_view(cls, view: HistoryView, capacity: int = HISTORY_CAPACITY) -> RollingHistory:
        buf = cls(capacity)
        if view._stop == len(view._items):
            # Nothing was appended past the published window; keep sharing.
            buf._items = view._items
            buf._start = view._start
        else:
            # A discarded draft left readings behind the window; drop them.
            buf._items = view._items[view._start : view._stop]
        buf._trim()
        return buf

    def __len__(self) -> int:
        return len(self._items) - self._start

    def append(self, reading: Reading) -> None:
        self._items.append(reading)
        self._trim()

    def clear(self) -> None:
        self._items = []
        self._start = 0

    def view(self) -> HistoryView:
        return HistoryView(self._items, self._start, len(self._items))

    def _trim(self) -> None:
        overflow = len(self._items) - self._start - self.capacity
        if overflow > 0:
            self._start += overflow
        if self._start >= self.capacity:
            self._items = self._items[self._start :]
            self._start = 0
