"""Channel listing and explicit inactivation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import ChannelListResponse, ChannelResponse
from ._helpers import normalize_channel_id_or_400

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_channel_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/channels", response_model=ChannelListResponse)
    async def get_channels() -> ChannelListResponse:
        snapshot = state.store.get_snapshot()
        return {"channels": [c.to_dict() for c in snapshot.channels.values()]}

    @router.post("/api/channels/{channel_id}/inactive", response_model=ChannelResponse)
    async def mark_channel_inactive(channel_id: str) -> ChannelResponse:
        normalized = normalize_channel_id_or_400(channel_id)
        if normalized not in state.store.get_snapshot().channels:
            raise HTTPException(status_code=404, detail="Unknown channel_id")
        snapshot = state.store.mark_inactive(normalized)
        return snapshot.channels[normalized].to_dict()

    return router
