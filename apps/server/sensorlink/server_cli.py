"""``sensorlink-server`` console entry point."""

from __future__ import annotations

import os


def main(argv: list[str] | None = None) -> None:
    # Set before sensorlink.app is imported so it skips building its module-level app.
    os.environ.setdefault("SENSORLINK_DISABLE_AUTO_APP", "1")
    from sensorlink.app import main as run_server

    run_server(argv)
