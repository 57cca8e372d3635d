from __future__ import annotations

import logging

import pytest

from sensorlink.domain_models import ChannelDefaults, ChannelStatus, ConnectionState
from sensorlink.store import SessionStore


def test_initial_snapshot(store: SessionStore, clock) -> None:
    snap = store.get_snapshot()
    assert snap.connection_state is ConnectionState.disconnected
    assert snap.version == 0
    assert snap.demo_mode is False
    assert snap.device_label is None
    assert len(snap.readings) == 0
    assert dict(snap.channels) == {}
    assert snap.session_started_at == clock.now


def test_mutate_publishes_and_notifies_in_registration_order(store: SessionStore) -> None:
    calls: list[tuple[str, int]] = []
    store.subscribe(lambda s: calls.append(("first", s.version)))
    store.subscribe(lambda s: calls.append(("second", s.version)))

    reading = store.mutate(lambda draft: draft.append_reading("a", 1.0))

    assert reading.sequence_id == 0
    assert store.get_snapshot().version == 1
    assert calls == [("first", 1), ("second", 1)]


def test_noop_mutation_is_not_published(store: SessionStore) -> None:
    seen = []
    store.subscribe(seen.append)
    store.mutate(lambda draft: None)
    store.mark_disconnected()
    assert store.get_snapshot().version == 0
    assert seen == []


def test_failed_mutation_publishes_nothing(store: SessionStore) -> None:
    seen = []
    store.subscribe(seen.append)

    def _boom(draft) -> None:
        draft.append_reading("a", 1.0)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.mutate(_boom)
    assert store.get_snapshot().version == 0
    assert len(store.get_snapshot().readings) == 0
    assert seen == []
    # The sequence id reserved by the failed draft is not burnt.
    assert store.mutate(lambda d: d.append_reading("a", 2.0)).sequence_id == 0


def test_observer_exception_does_not_affect_others(
    store: SessionStore, caplog: pytest.LogCaptureFixture
) -> None:
    seen = []

    def _bad(_snapshot) -> None:
        raise ValueError("observer failure")

    store.subscribe(_bad)
    store.subscribe(seen.append)
    with caplog.at_level(logging.WARNING, logger="sensorlink.store"):
        store.set_error("x")
    assert len(seen) == 1
    assert "observer" in caplog.text.lower()


def test_unsubscribe_removes_exactly_one_registration(store: SessionStore) -> None:
    seen = []
    unsub_first = store.subscribe(seen.append)
    store.subscribe(seen.append)

    unsub_first()
    unsub_first()
    store.set_error("x")
    assert len(seen) == 1


def test_mutation_from_observer_is_delivered_after_current_round(store: SessionStore) -> None:
    first_seen: list[int] = []
    second_seen: list[int] = []

    def _first(snapshot) -> None:
        first_seen.append(snapshot.version)
        if snapshot.version == 1:
            store.set_error("from observer")
            # Applied immediately, notified later.
            assert store.get_snapshot().version == 2

    store.subscribe(_first)
    store.subscribe(lambda s: second_seen.append(s.version))
    store.set_error("start")

    assert first_seen == [1, 2]
    assert second_seen == [1, 2]
    assert store.get_snapshot().last_error == "from observer"


def test_snapshots_are_immutable_after_later_mutations(store: SessionStore, clock) -> None:
    store.mutate(lambda d: d.append_reading("a", 1.0))
    before = store.get_snapshot()
    clock.advance(1.0)
    store.mutate(lambda d: d.append_reading("a", 2.0))
    store.mark_inactive("a")
    assert [r.value for r in before.readings] == [1.0]
    assert before.channels["a"].current_value == 1.0
    assert before.channels["a"].status is ChannelStatus.active
    with pytest.raises(TypeError):
        before.channels["b"] = before.channels["a"]  # type: ignore[index]


def test_history_capacity_is_enforced(clock) -> None:
    store = SessionStore(history_capacity=4, clock=clock)
    for i in range(10):
        store.mutate(lambda d, v=float(i): d.append_reading("a", v))
    readings = store.get_snapshot().readings
    assert len(readings) == 4
    assert [r.sequence_id for r in readings] == [6, 7, 8, 9]


def test_reset_keeps_channels_and_continues_sequence(store: SessionStore, clock) -> None:
    store.register_channels({"temp": ChannelDefaults("Temperature", "°C")})
    store.mutate(lambda d: d.append_reading("temp", 25.0))
    store.mutate(lambda d: d.append_reading("extra", 1.0))
    store.mark_inactive("extra")
    clock.advance(5.0)

    snap = store.reset()

    assert len(snap.readings) == 0
    assert set(snap.channels) == {"temp", "extra"}
    temp = snap.channels["temp"]
    assert (temp.name, temp.unit, temp.current_value) == ("Temperature", "°C", None)
    assert all(c.status is ChannelStatus.active for c in snap.channels.values())
    assert all(c.last_updated == clock.now for c in snap.channels.values())
    assert snap.session_started_at == clock.now
    assert store.mutate(lambda d: d.append_reading("temp", 24.0)).sequence_id == 2


def test_connection_lifecycle(store: SessionStore) -> None:
    store.set_error("old")
    assert store.begin_connecting() is True
    assert store.get_snapshot().connection_state is ConnectionState.connecting
    assert store.get_snapshot().last_error is None
    assert store.begin_connecting() is False

    store.mark_connected("Node", demo_mode=True)
    snap = store.get_snapshot()
    assert snap.is_connected
    assert (snap.device_label, snap.demo_mode) == ("Node", True)
    assert store.begin_connecting() is False

    store.mark_disconnected()
    version = store.get_snapshot().version
    store.mark_disconnected()
    snap = store.get_snapshot()
    assert snap.version == version
    assert snap.connection_state is ConnectionState.disconnected
    assert snap.device_label is None
    assert snap.demo_mode is False


def test_mark_connection_failed_sets_error(store: SessionStore) -> None:
    store.begin_connecting()
    snap = store.mark_connection_failed("denied")
    assert snap.connection_state is ConnectionState.disconnected
    assert snap.last_error == "denied"
