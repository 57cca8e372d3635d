"""Session state aggregator: the single owner of the session snapshot.

Writers never touch the snapshot directly.  They call :meth:`SessionStore.mutate`
with a function that edits a :class:`SessionDraft`; the store then swaps in
a freshly built snapshot and notifies observers synchronously, in
registration order.

Threading: the asyncio runtime drives every mutation from the event loop, so
the lock is uncontended there.  It is what makes ``mutate`` the single
serialization point if a host calls in from worker threads.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from collections.abc import Callable, Mapping
from threading import RLock
from types import MappingProxyType
from typing import TypeVar

from .constants import HISTORY_CAPACITY
from .domain_models import (
    ChannelDefaults,
    ConnectionState,
    Reading,
    SessionSnapshot,
)
from .history import HistoryView, RollingHistory
from .registry import ChannelRegistry

LOGGER = logging.getLogger(__name__)

Observer = Callable[[SessionSnapshot], None]
T = TypeVar("T")


class SessionDraft:
    """Mutable working copy of one snapshot, valid for a single mutation."""

    def __init__(
        self,
        base: SessionSnapshot,
        *,
        capacity: int,
        now: float,
        next_sequence: int,
    ) -> None:
        self._base = base
        self.now = now
        self.connection_state = base.connection_state
        self.demo_mode = base.demo_mode
        self.device_label = base.device_label
        self.last_error = base.last_error
        self.session_started_at = base.session_started_at
        self.parse_warnings = base.parse_warnings
        self.channels = ChannelRegistry(base.channels)
        self.history = RollingHistory.from_view(base.readings, capacity)
        self.next_sequence = next_sequence
        self._history_changed = False

    def append_reading(self, channel_id: str, value: float) -> Reading:
        """Assign the next sequence id and commit *value* to channel and history."""
        channel = self.channels.apply_reading(channel_id, value, self.now)
        reading = Reading(
            sequence_id=self.next_sequence,
            timestamp=self.now,
            channel_id=channel.id,
            value=value,
        )
        self.next_sequence += 1
        self.history.append(reading)
        self._history_changed = True
        return reading

    def reset(self) -> None:
        self.history.clear()
        self.channels.clear_readings(self.now)
        self.parse_warnings = 0
        self.session_started_at = self.now
        self._history_changed = True

    @property
    def changed(self) -> bool:
        base = self._base
        return (
            self._history_changed
            or self.channels.changed
            or self.connection_state != base.connection_state
            or self.demo_mode != base.demo_mode
            or self.device_label != base.device_label
            or self.last_error != base.last_error
            or self.session_started_at != base.session_started_at
            or self.parse_warnings != base.parse_warnings
        )

    def build(self, version: int) -> SessionSnapshot:
        return SessionSnapshot(
            connection_state=self.connection_state,
            demo_mode=self.demo_mode,
            device_label=self.device_label,
            last_error=self.last_error,
            channels=MappingProxyType(self.channels.as_dict()),
            readings=self.history.view(),
            session_started_at=self.session_started_at,
            version=version,
            parse_warnings=self.parse_warnings,
        )


class SessionStore:
    def __init__(
        self,
        *,
        history_capacity: int = HISTORY_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lock = RLock()
        self._clock = clock
        self._capacity = max(1, int(history_capacity))
        self._snapshot = SessionSnapshot(
            connection_state=ConnectionState.disconnected,
            demo_mode=False,
            device_label=None,
            last_error=None,
            channels=MappingProxyType({}),
            readings=HistoryView.empty(),
            session_started_at=clock(),
        )
        self._next_sequence = 0
        self._observers: list[tuple[int, Observer]] = []
        self._tokens = itertools.count()
        self._pending: deque[SessionSnapshot] = deque()
        self._dispatching = False

    @property
    def history_capacity(self) -> int:
        return self._capacity

    def now(self) -> float:
        return self._clock()

    # -- reading --------------------------------------------------------------

    def get_snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register *observer*; the returned handle removes this registration only."""
        with self._lock:
            token = next(self._tokens)
            self._observers.append((token, observer))

        def unsubscribe() -> None:
            with self._lock:
                self._observers = [entry for entry in self._observers if entry[0] != token]

        return unsubscribe

    # -- writing --------------------------------------------------------------

    def mutate(self, fn: Callable[[SessionDraft], T]) -> T:
        """Apply *fn* to a working copy and publish it if anything changed.

        Returns whatever *fn* returns.  If *fn* raises, the draft is discarded
        and the published snapshot is untouched.
        """
        with self._lock:
            draft = SessionDraft(
                self._snapshot,
                capacity=self._capacity,
                now=self._clock(),
                next_sequence=self._next_sequence,
            )
            result = fn(draft)
            if draft.changed:
                self._next_sequence = draft.next_sequence
                self._publish(draft.build(self._snapshot.version + 1))
            return result

    def _publish(self, snapshot: SessionSnapshot) -> None:
        self._snapshot = snapshot
        self._pending.append(snapshot)
        if self._dispatching:
            # Mutation requested by an observer: delivered after this round.
            return
        self._dispatching = True
        try:
            while self._pending:
                current = self._pending.popleft()
                for _token, observer in list(self._observers):
                    try:
                        observer(current)
                    except Exception:
                        LOGGER.warning("Snapshot observer %r failed", observer, exc_info=True)
        finally:
            self._dispatching = False

    # -- lifecycle helpers ----------------------------------------------------

    def reset(self) -> SessionSnapshot:
        """Clear history and readings but keep every channel definition."""
        self.mutate(lambda draft: draft.reset())
        return self._snapshot

    def register_channels(self, defaults: Mapping[str, ChannelDefaults]) -> SessionSnapshot:
        def _register(draft: SessionDraft) -> None:
            for channel_id, channel_defaults in defaults.items():
                draft.channels.upsert(channel_id, channel_defaults, now=draft.now)

        self.mutate(_register)
        return self._snapshot

    def mark_inactive(self, channel_id: str) -> SessionSnapshot:
        self.mutate(lambda draft: draft.channels.mark_inactive(channel_id, now=draft.now))
        return self._snapshot

    def set_error(self, message: str | None) -> SessionSnapshot:
        def _set(draft: SessionDraft) -> None:
            draft.last_error = message

        self.mutate(_set)
        return self._snapshot

    def begin_connecting(self) -> bool:
        """Enter ``connecting``; refused unless currently ``disconnected``."""

        def _begin(draft: SessionDraft) -> bool:
            if draft.connection_state is not ConnectionState.disconnected:
                return False
            draft.connection_state = ConnectionState.connecting
            draft.last_error = None
            return True

        return self.mutate(_begin)

    def mark_connected(self, device_label: str, *, demo_mode: bool) -> SessionSnapshot:
        def _connected(draft: SessionDraft) -> None:
            draft.connection_state = ConnectionState.connected
            draft.device_label = device_label
            draft.demo_mode = demo_mode

        self.mutate(_connected)
        return self._snapshot

    def mark_connection_failed(self, message: str | None) -> SessionSnapshot:
        def _failed(draft: SessionDraft) -> None:
            draft.connection_state = ConnectionState.disconnected
            draft.device_label = None
            draft.demo_mode = False
            draft.last_error = message

        self.mutate(_failed)
        return self._snapshot

    def mark_disconnected(self) -> SessionSnapshot:
        """Idempotent: a second call publishes nothing."""

        def _disconnected(draft: SessionDraft) -> None:
            draft.connection_state = ConnectionState.disconnected
            draft.device_label = None
            draft.demo_mode = False

        self.mutate(_disconnected)
        return self._snapshot
