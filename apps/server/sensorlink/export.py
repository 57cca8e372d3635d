"""CSV export of the rolling history."""

from __future__ import annotations

import csv
import io
import logging
import time
from pathlib import Path

from .domain_models import SessionSnapshot, iso_utc

LOGGER = logging.getLogger(__name__)

CSV_HEADER = ("Timestamp", "Parameter", "Value", "Unit")
DEMO_PREFIX = "DEMO_"


def build_csv(snapshot: SessionSnapshot) -> str | None:
    """Render the history as CSV, or ``None`` when there is nothing to export."""
    if not snapshot.readings:
        return None
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for reading in snapshot.readings:
        writer.writerow(
            (
                iso_utc(reading.timestamp),
                snapshot.channel_name(reading.channel_id),
                repr(reading.value),
                snapshot.channel_unit(reading.channel_id),
            )
        )
    return buf.getvalue()


def export_filename(snapshot: SessionSnapshot, now: float | None = None) -> str:
    ts = time.time() if now is None else now
    prefix = DEMO_PREFIX if snapshot.demo_mode else ""
    return f"{prefix}sensor_data_{int(ts * 1000)}.csv"


def write_csv(snapshot: SessionSnapshot, directory: Path, now: float | None = None) -> Path | None:
    content = build_csv(snapshot)
    if content is None:
        LOGGER.info("No data to export")
        return None
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(snapshot, now)
    path.write_text(content, encoding="utf-8")
    LOGGER.info("Exported %d readings to %s", len(snapshot.readings), path)
    return path
