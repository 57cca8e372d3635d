"""HTTP bridge into the ingestion pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import IngestRequest, IngestResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_ingest_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.post("/api/ingest", response_model=IngestResponse)
    async def ingest(req: IngestRequest) -> IngestResponse:
        result = state.controller.handle_data(req.channel_id, req.payload)
        if result.error is not None:
            raise HTTPException(status_code=422, detail=str(result.error))
        return {
            "accepted": len(result.readings),
            "readings": [r.to_dict() for r in result.readings],
            "warnings": [
                {"position": w.position, "token": w.token, "reason": w.reason}
                for w in result.warnings
            ],
        }

    return router
