"""Route package: assembles domain-specific sub-routers into one APIRouter.

Each sub-module defines a ``create_*_routes(state)`` function that returns
an ``APIRouter`` with endpoints scoped to a single domain.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from .channels import create_channel_routes
from .export import create_export_routes
from .health import create_health_routes
from .ingest import create_ingest_routes
from .session import create_session_routes
from .sessions import create_session_history_routes
from .websocket import create_websocket_routes

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_router(state: RuntimeState) -> APIRouter:
    """Assemble all domain-specific route groups into one router."""
    router = APIRouter()
    router.include_router(create_health_routes(state))
    router.include_router(create_session_routes(state))
    router.include_router(create_channel_routes(state))
    router.include_router(create_ingest_routes(state))
    router.include_router(create_export_routes(state))
    router.include_router(create_session_history_routes(state))
    router.include_router(create_websocket_routes(state))
    return router
