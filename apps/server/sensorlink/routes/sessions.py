"""Recorded session history: finalize, list, fetch, delete."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import (
    DeleteSessionResponse,
    SessionDetailResponse,
    SessionListResponse,
)
from ._helpers import async_require_session

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_session_history_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/sessions", response_model=SessionListResponse)
    async def list_sessions() -> SessionListResponse:
        return {"sessions": await asyncio.to_thread(state.session_db.list_sessions)}

    @router.post("/api/sessions", response_model=SessionDetailResponse)
    async def save_current_session() -> SessionDetailResponse:
        record = state.controller.finalize_session()
        if record is None:
            raise HTTPException(status_code=404, detail="No data to export")
        session_id = await asyncio.to_thread(state.session_db.create_session, record)
        return await async_require_session(state.session_db, session_id)

    @router.get("/api/sessions/{session_id}", response_model=SessionDetailResponse)
    async def get_session(session_id: int) -> SessionDetailResponse:
        return await async_require_session(state.session_db, session_id)

    @router.delete("/api/sessions/{session_id}", response_model=DeleteSessionResponse)
    async def delete_session(session_id: int) -> DeleteSessionResponse:
        deleted = await asyncio.to_thread(state.session_db.delete_session, session_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"id": session_id, "status": "deleted"}

    return router
