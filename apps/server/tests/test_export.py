from __future__ import annotations

import csv
import io
from pathlib import Path

from sensorlink.domain_models import ChannelDefaults
from sensorlink.export import CSV_HEADER, build_csv, export_filename, write_csv
from sensorlink.store import SessionStore


def _record(store: SessionStore, channel_id: str, value: float) -> None:
    store.mutate(lambda draft: draft.append_reading(channel_id, value))


def test_empty_history_exports_nothing(store: SessionStore, tmp_path: Path) -> None:
    assert build_csv(store.get_snapshot()) is None
    assert write_csv(store.get_snapshot(), tmp_path / "out") is None
    assert not (tmp_path / "out").exists()


def test_csv_rows_use_channel_metadata(store: SessionStore, clock) -> None:
    store.register_channels({"temp": ChannelDefaults(name="Temperature", unit="°C")})
    _record(store, "temp", 24.5)
    clock.advance(0.25)
    _record(store, "raw", 3.0)

    rows = list(csv.reader(io.StringIO(build_csv(store.get_snapshot()))))
    assert tuple(rows[0]) == CSV_HEADER
    assert rows[1] == ["2023-11-14T22:13:20.000Z", "Temperature", "24.5", "°C"]
    # Auto-provisioned channels are named after their id and carry no unit.
    assert rows[2] == ["2023-11-14T22:13:20.250Z", "raw", "3.0", ""]


def test_export_filename_marks_demo_sessions(store: SessionStore) -> None:
    assert export_filename(store.get_snapshot(), now=1_700_000_000.5) == (
        "sensor_data_1700000000500.csv"
    )
    store.begin_connecting()
    store.mark_connected("Simulation Node", demo_mode=True)
    assert export_filename(store.get_snapshot(), now=1_700_000_000.5) == (
        "DEMO_sensor_data_1700000000500.csv"
    )


def test_write_csv_creates_directory_and_file(store: SessionStore, tmp_path: Path) -> None:
    _record(store, "a", 1.0)
    _record(store, "a", 2.0)
    path = write_csv(store.get_snapshot(), tmp_path / "exports", now=1_700_000_001.0)
    assert path == tmp_path / "exports" / "sensor_data_1700000001000.csv"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Timestamp,Parameter,Value,Unit"
    assert len(lines) == 3
