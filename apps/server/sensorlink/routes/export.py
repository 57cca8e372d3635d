"""CSV export of the live rolling history: download, or write to the export dir."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from ..api_models import ExportWrittenResponse
from ..export import build_csv, export_filename, write_csv
from ._helpers import safe_filename

if TYPE_CHECKING:
    from ..app import RuntimeState

_NO_DATA = "No data to export"


def create_export_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/export.csv")
    async def export_csv() -> Response:
        snapshot = state.store.get_snapshot()
        content = build_csv(snapshot)
        if content is None:
            raise HTTPException(status_code=404, detail=_NO_DATA)
        filename = safe_filename(export_filename(snapshot, state.store.now()))
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @router.post("/api/export", response_model=ExportWrittenResponse)
    async def export_to_disk() -> ExportWrittenResponse:
        snapshot = state.store.get_snapshot()
        path = await asyncio.to_thread(
            write_csv, snapshot, state.config.storage.export_dir, state.store.now()
        )
        if path is None:
            raise HTTPException(status_code=404, detail=_NO_DATA)
        return {"path": str(path), "rows": len(snapshot.readings)}

    return router
