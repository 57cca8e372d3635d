"""SQLite persistence for finished sensor sessions.

One row per session in ``sensor_sessions``; the readings travel as a single
JSON document so a session can be replayed or exported later without the
live store.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any

from .domain_models import SessionRecord, iso_utc
from .json_utils import safe_json_dumps, safe_json_loads

LOGGER = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sensor_sessions (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    device_name  TEXT NOT NULL,
    start_time   TEXT NOT NULL,
    end_time     TEXT,
    data_points  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sensor_sessions_start ON sensor_sessions(start_time);
"""


class SessionHistoryDB:
    """Thin wrapper around a SQLite database of recorded sessions."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = RLock()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._ensure_schema()

    # -- lifecycle ------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _cursor(self, *, commit: bool = True):
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                if commit:
                    self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def _ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.executescript(_SCHEMA_SQL)
        with self._cursor() as cur:
            cur.execute("SELECT value FROM schema_meta WHERE key = ?", ("version",))
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "INSERT INTO schema_meta (key, value) VALUES (?, ?)",
                    ("version", str(_SCHEMA_VERSION)),
                )
                return
            version = int(str(row[0]))
            if version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported session DB schema version {version}; "
                    f"expected {_SCHEMA_VERSION}. Delete the database file to recreate."
                )

    # -- write ----------------------------------------------------------------

    def create_session(self, record: SessionRecord) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO sensor_sessions (device_name, start_time, end_time, data_points) "
                "VALUES (?, ?, ?, ?)",
                (
                    record.device_name,
                    iso_utc(record.start_time),
                    iso_utc(record.end_time),
                    safe_json_dumps(record.data_points),
                ),
            )
            session_id = int(cur.lastrowid or 0)
        LOGGER.info(
            "Stored session %d from %s (%d data points)",
            session_id,
            record.device_name,
            len(record.data_points),
        )
        return session_id

    def delete_session(self, session_id: int) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM sensor_sessions WHERE id = ?", (session_id,))
            return cur.rowcount > 0

    # -- read -----------------------------------------------------------------

    def list_sessions(self) -> list[dict[str, Any]]:
        """Session summaries, newest first, without their data points."""
        with self._cursor(commit=False) as cur:
            cur.execute(
                "SELECT id, device_name, start_time, end_time, "
                "json_array_length(data_points) "
                "FROM sensor_sessions ORDER BY start_time DESC, id DESC"
            )
            rows = cur.fetchall()
        return [
            {
                "id": session_id,
                "device_name": device_name,
                "start_time": start,
                "end_time": end,
                "data_point_count": count or 0,
            }
            for session_id, device_name, start, end, count in rows
        ]

    def get_session(self, session_id: int) -> dict[str, Any] | None:
        with self._cursor(commit=False) as cur:
            cur.execute(
                "SELECT id, device_name, start_time, end_time, data_points "
                "FROM sensor_sessions WHERE id = ?",
                (session_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        sid, device_name, start, end, points_json = row
        data_points = safe_json_loads(points_json, context=f"session {sid} data points")
        return {
            "id": sid,
            "device_name": device_name,
            "start_time": start,
            "end_time": end,
            "data_points": data_points if isinstance(data_points, list) else [],
        }
