from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from sensorlink.ws_hub import WebSocketHub


def _ws(send_side_effect=None) -> MagicMock:
    ws = MagicMock()
    ws.send_text = AsyncMock(side_effect=send_side_effect)
    return ws


@pytest.mark.asyncio
async def test_add_remove_and_count() -> None:
    hub = WebSocketHub()
    ws = _ws()
    await hub.add(ws)
    assert hub.connection_count == 1
    await hub.remove(ws)
    await hub.remove(ws)
    assert hub.connection_count == 0


@pytest.mark.asyncio
async def test_broadcast_sends_only_when_version_changes() -> None:
    hub = WebSocketHub()
    ws = _ws()
    await hub.add(ws)
    builder = MagicMock(return_value=(1, {"version": 1}))

    assert await hub.broadcast(1, builder) == 1
    assert await hub.broadcast(1, builder) == 0
    assert builder.call_count == 1
    assert json.loads(ws.send_text.await_args.args[0]) == {"version": 1}

    builder.return_value = (2, {"version": 2})
    assert await hub.broadcast(2, builder) == 1
    assert ws.send_text.await_count == 2


@pytest.mark.asyncio
async def test_new_connection_gets_current_state() -> None:
    hub = WebSocketHub()
    first, second = _ws(), _ws()
    builder = MagicMock(return_value=(5, {"version": 5}))
    await hub.add(first)
    await hub.broadcast(5, builder)
    await hub.add(second)
    assert await hub.broadcast(5, builder) == 1
    first.send_text.assert_awaited_once()
    second.send_text.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_send_removes_connection() -> None:
    hub = WebSocketHub()
    dead = _ws(send_side_effect=RuntimeError("closed"))
    alive = _ws()
    await hub.add(dead)
    await hub.add(alive)
    sent = await hub.broadcast(1, lambda: (1, {"ok": True}))
    assert sent == 1
    assert hub.connection_count == 1


@pytest.mark.asyncio
async def test_slow_send_times_out_and_is_dropped() -> None:
    hub = WebSocketHub()
    hub._push_timeout_s = 0.01

    async def _hang(_text: str) -> None:
        await asyncio.sleep(1.0)

    slow = MagicMock()
    slow.send_text = _hang
    await hub.add(slow)
    assert await hub.broadcast(1, lambda: (1, {})) == 0
    assert hub.connection_count == 0


@pytest.mark.asyncio
async def test_build_failure_sends_error_payload_and_retries() -> None:
    hub = WebSocketHub()
    ws = _ws()
    await hub.add(ws)

    def _broken():
        raise ValueError("bad state")

    await hub.broadcast(3, _broken)
    assert json.loads(ws.send_text.await_args.args[0]) == {"error": "payload_build_failed"}
    # The error payload does not count as having seen version 3.
    assert await hub.broadcast(3, lambda: (3, {"version": 3})) == 1


@pytest.mark.asyncio
async def test_non_finite_values_become_null() -> None:
    hub = WebSocketHub()
    ws = _ws()
    await hub.add(ws)
    await hub.broadcast(1, lambda: (1, {"value": float("nan")}))
    assert json.loads(ws.send_text.await_args.args[0]) == {"value": None}


@pytest.mark.asyncio
async def test_run_loop_survives_version_source_errors() -> None:
    hub = WebSocketHub()
    ws = _ws()
    await hub.add(ws)
    state = {"version": 1, "calls": 0}

    def _version() -> int:
        state["calls"] += 1
        if state["calls"] == 1:
            raise RuntimeError("boom")
        return state["version"]

    task = asyncio.create_task(hub.run(100, _version, lambda: (state["version"], {})))
    try:
        for _ in range(200):
            if ws.send_text.await_count >= 1:
                break
            await asyncio.sleep(0.01)
        state["version"] = 2
        for _ in range(200):
            if ws.send_text.await_count >= 2:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
    assert ws.send_text.await_count == 2
