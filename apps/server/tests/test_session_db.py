from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from sensorlink.domain_models import SessionRecord
from sensorlink.session_db import SessionHistoryDB

START = 1_700_000_000.0


def _record(device: str = "Simulation Node", start: float = START, points: int = 2):
    return SessionRecord(
        device_name=device,
        start_time=start,
        end_time=start + 60.0,
        data_points=[
            {"id": i, "parameter": "temp", "value": 20.0 + i, "unit": "°C"} for i in range(points)
        ],
    )


@pytest.fixture
def db(tmp_path: Path):
    history = SessionHistoryDB(tmp_path / "nested" / "sessions.db")
    yield history
    history.close()


def test_create_and_get_session(db: SessionHistoryDB) -> None:
    session_id = db.create_session(_record())
    stored = db.get_session(session_id)
    assert stored is not None
    assert stored["device_name"] == "Simulation Node"
    assert stored["start_time"] == "2023-11-14T22:13:20.000Z"
    assert stored["end_time"] == "2023-11-14T22:14:20.000Z"
    assert [p["value"] for p in stored["data_points"]] == [20.0, 21.0]
    assert stored["data_points"][0]["unit"] == "°C"


def test_list_sessions_newest_first_with_counts(db: SessionHistoryDB) -> None:
    older = db.create_session(_record("old", START, points=1))
    newer = db.create_session(_record("new", START + 3600.0, points=3))
    sessions = db.list_sessions()
    assert [s["id"] for s in sessions] == [newer, older]
    assert sessions[0]["data_point_count"] == 3
    assert "data_points" not in sessions[0]


def test_delete_session(db: SessionHistoryDB) -> None:
    session_id = db.create_session(_record())
    assert db.delete_session(session_id) is True
    assert db.get_session(session_id) is None
    assert db.delete_session(session_id) is False


def test_get_missing_session_returns_none(db: SessionHistoryDB) -> None:
    assert db.get_session(999) is None


def test_non_finite_values_are_stored_as_null(db: SessionHistoryDB) -> None:
    record = _record(points=1)
    record.data_points[0]["value"] = float("nan")
    stored = db.get_session(db.create_session(record))
    assert stored["data_points"][0]["value"] is None


def test_schema_version_mismatch_raises(tmp_path: Path) -> None:
    path = tmp_path / "sessions.db"
    SessionHistoryDB(path).close()
    conn = sqlite3.connect(str(path))
    conn.execute("UPDATE schema_meta SET value = '99' WHERE key = 'version'")
    conn.commit()
    conn.close()
    with pytest.raises(RuntimeError, match="schema version 99"):
        SessionHistoryDB(path)


def test_reopen_keeps_sessions(tmp_path: Path) -> None:
    path = tmp_path / "sessions.db"
    first = SessionHistoryDB(path)
    session_id = first.create_session(_record())
    first.close()
    second = SessionHistoryDB(path)
    try:
        assert second.get_session(session_id) is not None
    finally:
        second.close()
