"""Shared route helpers used across multiple route modules."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any

from fastapi import HTTPException

from ..registry import normalize_channel_id

if TYPE_CHECKING:
    from ..session_db import SessionHistoryDB

_SAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]")


def normalize_channel_id_or_400(channel_id: str) -> str:
    try:
        return normalize_channel_id(channel_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid channel_id") from exc


def safe_filename(name: str) -> str:
    """Sanitize *name* for use in Content-Disposition headers."""
    return _SAFE_FILENAME_RE.sub("_", name)[:200] or "download"


async def async_require_session(session_db: SessionHistoryDB, session_id: int) -> dict[str, Any]:
    """Fetch a stored session in a thread or raise 404."""
    session = await asyncio.to_thread(session_db.get_session, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
