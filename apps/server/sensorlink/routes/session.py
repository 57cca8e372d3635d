"""Live session: snapshot, connect/disconnect and reset."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import ConnectRequest, SessionSnapshotResponse
from ..errors import ConnectionBusyError

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_session_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/session", response_model=SessionSnapshotResponse)
    async def get_session() -> SessionSnapshotResponse:
        return state.store.get_snapshot().to_dict()

    @router.post("/api/session/connect", response_model=SessionSnapshotResponse)
    async def connect(req: ConnectRequest) -> SessionSnapshotResponse:
        try:
            snapshot = await state.controller.connect(use_simulation=req.use_simulation)
        except ConnectionBusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return snapshot.to_dict()

    @router.post("/api/session/disconnect", response_model=SessionSnapshotResponse)
    async def disconnect() -> SessionSnapshotResponse:
        snapshot = await state.controller.disconnect()
        return snapshot.to_dict()

    @router.post("/api/session/reset", response_model=SessionSnapshotResponse)
    async def reset() -> SessionSnapshotResponse:
        return state.controller.reset().to_dict()

    return router
