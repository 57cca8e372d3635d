"""Health check endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import HealthResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_health_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        snapshot = state.store.get_snapshot()
        return {
            "status": "ok",
            "connection_state": str(snapshot.connection_state),
            "demo_mode": snapshot.demo_mode,
            "snapshot_version": snapshot.version,
            "monitor_running": state.monitor.running,
            "ws_connections": state.ws_hub.connection_count,
            "intake_stats": state.pipeline.stats(),
        }

    return router
