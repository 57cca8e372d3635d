"""Live snapshot push to WebSocket clients.

Every client remembers the snapshot version it last received.  A push tick
only serializes and sends when at least one client is behind the current
version, so an idle session costs nothing while a freshly connected client
still gets the current state on the next tick.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket

from .json_utils import sanitize_value

LOGGER = logging.getLogger(__name__)

_WS_DEBUG = os.environ.get("SENSORLINK_WS_DEBUG", "0") == "1"

_PUSH_TIMEOUT_S: float = 0.5
"""A client that cannot take a payload within this time is disconnected."""

_PUSH_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum gap between two logged push failures."""

_MAX_FAILED_TICKS = 10
"""Consecutive failed ticks before the push loop backs off."""

_ERROR_PAYLOAD: str = json.dumps({"error": "payload_build_failed"}, separators=(",", ":"))
"""Sent instead of the snapshot when serializing it fails."""

PayloadBuilder = Callable[[], tuple[int, dict[str, Any]]]
"""Returns ``(snapshot_version, payload)``."""


@dataclass(slots=True)
class WSConnection:
    websocket: WebSocket
    last_version: int | None = None


class WebSocketHub:
    def __init__(self):
        self._clients: dict[int, WSConnection] = {}
        self._lock = asyncio.Lock()
        self._push_timeout_s = _PUSH_TIMEOUT_S
        self._next_error_log_at = 0.0

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    async def add(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients[id(websocket)] = WSConnection(websocket=websocket)

    async def remove(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.pop(id(websocket), None)

    async def _behind(self, version: int) -> list[WSConnection]:
        async with self._lock:
            return [c for c in self._clients.values() if c.last_version != version]

    def _render(self, payload_builder: PayloadBuilder, waiting: int) -> tuple[int | None, str]:
        try:
            version, payload = payload_builder()
            text = json.dumps(sanitize_value(payload), separators=(",", ":"), allow_nan=False)
        except Exception:
            LOGGER.error(
                "Snapshot payload could not be built; sending error payload to %d client(s)",
                waiting,
                exc_info=True,
            )
            return None, _ERROR_PAYLOAD
        return version, text

    async def _push(self, conn: WSConnection, version: int | None, text: str) -> bool:
        try:
            await asyncio.wait_for(conn.websocket.send_text(text), timeout=self._push_timeout_s)
        except Exception:
            now = asyncio.get_running_loop().time()
            if now >= self._next_error_log_at:
                self._next_error_log_at = now + _PUSH_ERROR_LOG_INTERVAL_S
                LOGGER.warning("Snapshot push failed; dropping WebSocket client", exc_info=True)
            return False
        conn.last_version = version
        return True

    async def broadcast(self, current_version: int, payload_builder: PayloadBuilder) -> int:
        """Push to every client behind *current_version*; return successful sends."""
        waiting = await self._behind(current_version)
        if not waiting:
            return 0
        version, text = self._render(payload_builder, len(waiting))
        results = await asyncio.gather(*(self._push(conn, version, text) for conn in waiting))
        failed = [conn.websocket for conn, ok in zip(waiting, results, strict=True) if not ok]
        if failed:
            async with self._lock:
                for websocket in failed:
                    self._clients.pop(id(websocket), None)
        if _WS_DEBUG:
            LOGGER.debug(
                "WS_DEBUG version=%s bytes=%d clients=%d failed=%d",
                version,
                len(text),
                len(waiting),
                len(failed),
            )
        return len(waiting) - len(failed)

    async def run(
        self,
        hz: int,
        version_source: Callable[[], int],
        payload_builder: PayloadBuilder,
    ) -> None:
        period_s = 1.0 / max(1, hz)
        failed_ticks = 0
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.broadcast(version_source(), payload_builder)
                failed_ticks = 0
            except Exception:
                failed_ticks += 1
                if failed_ticks < _MAX_FAILED_TICKS:
                    LOGGER.warning("Snapshot push tick failed; retrying", exc_info=True)
                else:
                    LOGGER.error(
                        "Snapshot push failed %d ticks in a row; backing off",
                        failed_ticks,
                        exc_info=True,
                    )
                    await asyncio.sleep(period_s * 5)
            await asyncio.sleep(max(0.0, period_s - (loop.time() - started)))
