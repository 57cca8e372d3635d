"""Runtime orchestration: transport -> ingestion -> session store -> WS/API.

Keep this module focused on wiring.  State rules live in ``store.py`` and
``registry.py``; connection policy lives in ``session.py``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from .config import AppConfig, load_config
from .constants import MS_PER_SECOND
from .ingest import IngestionPipeline
from .monitor import StalenessMonitor
from .routes import create_router
from .session import SessionController
from .session_db import SessionHistoryDB
from .simulation import SimulatedTransport, default_profiles
from .store import SessionStore
from .transport import Transport, TransportCallbacks
from .udp_data_rx import UDPTransport
from .ws_hub import WebSocketHub

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    store: SessionStore
    pipeline: IngestionPipeline
    monitor: StalenessMonitor
    controller: SessionController
    ws_hub: WebSocketHub
    session_db: SessionHistoryDB
    tasks: list[asyncio.Task] = field(default_factory=list)

    def snapshot_version(self) -> int:
        return self.store.get_snapshot().version

    def build_ws_payload(self) -> tuple[int, dict[str, Any]]:
        snapshot = self.store.get_snapshot()
        window = self.config.history.visualization_window
        return snapshot.version, snapshot.to_dict(window=window)


def _transport_factories(config: AppConfig):
    def live_transport_factory(callbacks: TransportCallbacks) -> Transport:
        return UDPTransport(
            callbacks,
            host=config.transport.data_host,
            port=config.transport.data_port,
            queue_maxsize=config.transport.data_queue_maxsize,
        )

    def simulation_factory(callbacks: TransportCallbacks, fallback: bool) -> Transport:
        return SimulatedTransport(
            callbacks,
            profiles=default_profiles(humidity_dropout_s=config.simulation.humidity_dropout_s),
            connect_delay_s=config.simulation.connect_delay_ms / MS_PER_SECOND,
            spike_probability=config.simulation.spike_probability,
            fallback=fallback,
        )

    return live_transport_factory, simulation_factory


def create_app(config_path: Path | None = None) -> FastAPI:
    config = load_config(config_path)
    store = SessionStore(history_capacity=config.history.capacity)
    pipeline = IngestionPipeline(store)
    monitor = StalenessMonitor(
        store,
        stale_threshold_ms=config.monitor.stale_threshold_ms,
        monitor_interval_ms=config.monitor.monitor_interval_ms,
    )
    session_db = SessionHistoryDB(config.storage.session_db_path)
    live_transport_factory, simulation_factory = _transport_factories(config)
    controller = SessionController(
        store,
        pipeline=pipeline,
        monitor=monitor,
        live_transport_factory=live_transport_factory,
        simulation_factory=simulation_factory,
        auto_fallback_to_simulation=config.transport.auto_fallback_to_simulation,
        permission_fallback_delay_ms=config.transport.permission_fallback_delay_ms,
        session_sink=session_db.create_session if config.storage.persist_sessions else None,
    )
    runtime = RuntimeState(
        config=config,
        store=store,
        pipeline=pipeline,
        monitor=monitor,
        controller=controller,
        ws_hub=WebSocketHub(),
        session_db=session_db,
    )

    async def start_runtime() -> None:
        runtime.tasks = [
            asyncio.create_task(
                runtime.ws_hub.run(
                    config.ui.push_hz,
                    runtime.snapshot_version,
                    runtime.build_ws_payload,
                ),
                name="ws-broadcast",
            ),
        ]

    async def stop_runtime() -> None:
        try:
            await runtime.controller.shutdown()
        except Exception:
            LOGGER.warning("Error shutting down session controller", exc_info=True)
        for task in runtime.tasks:
            task.cancel()
        await asyncio.gather(*runtime.tasks, return_exceptions=True)
        runtime.tasks.clear()
        try:
            runtime.session_db.close()
        except Exception:
            LOGGER.warning("Error closing session DB", exc_info=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_runtime()
        try:
            yield
        finally:
            await stop_runtime()

    app = FastAPI(title="SensorLink", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


app: FastAPI | None = (
    create_app()
    if __name__ != "__main__" and os.getenv("SENSORLINK_DISABLE_AUTO_APP", "0") != "1"
    else None
)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the SensorLink server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args(argv)

    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    uvicorn.run(
        runtime_app,
        host=runtime.config.server.host,
        port=runtime.config.server.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
