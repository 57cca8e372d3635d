from __future__ import annotations

import asyncio
import errno
import logging
import socket
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import async_wait_until
from sensorlink.errors import TransportError, TransportErrorKind
from sensorlink.transport import TransportCallbacks
from sensorlink.udp_data_rx import (
    DataDatagramProtocol,
    UDPTransport,
    classify_bind_error,
    split_datagram,
)


def _callbacks() -> TransportCallbacks:
    return TransportCallbacks(on_data=Mock(), on_disconnected=Mock())


def test_split_datagram_with_and_without_hint() -> None:
    assert split_datagram(b"temp|23.5") == ("temp", b"23.5")
    assert split_datagram(b"23.5") == (None, b"23.5")
    assert split_datagram(b" |1,2") == (None, b"1,2")
    assert split_datagram(b"a|b|c") == ("a", b"b|c")


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (PermissionError(errno.EACCES, "denied"), TransportErrorKind.permission_denied),
        (OSError(errno.EADDRNOTAVAIL, "no such address"), TransportErrorKind.not_found),
        (socket.gaierror("unknown host"), TransportErrorKind.not_found),
        (asyncio.CancelledError(), TransportErrorKind.cancelled),
        (OSError(errno.EADDRINUSE, "in use"), TransportErrorKind.other),
    ],
)
def test_classify_bind_error(exc: BaseException, kind: TransportErrorKind) -> None:
    assert classify_bind_error(exc).kind is kind


def test_classify_bind_error_passes_transport_errors_through() -> None:
    err = TransportError(TransportErrorKind.other, "boom")
    assert classify_bind_error(err) is err


@pytest.mark.asyncio
async def test_queued_datagram_reaches_data_callback() -> None:
    callbacks = _callbacks()
    proto = DataDatagramProtocol(callbacks)
    proto.datagram_received(b"temp|21.5", ("127.0.0.1", 5000))
    proto.datagram_received(b"", ("127.0.0.1", 5000))
    task = asyncio.create_task(proto.process_queue())
    try:
        assert await async_wait_until(lambda: callbacks.on_data.called)
        callbacks.on_data.assert_called_once_with("temp", b"21.5")
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_queue_full_drops_and_rate_limits_warning(caplog) -> None:
    proto = DataDatagramProtocol(_callbacks(), queue_maxsize=1)
    proto._last_queue_drop_log_ts = float("-inf")
    with caplog.at_level(logging.WARNING, logger="sensorlink.udp_data_rx"):
        for _ in range(4):
            proto.datagram_received(b"1.0", ("127.0.0.1", 5000))
    assert proto.dropped_datagrams == 3
    drop_logs = [r for r in caplog.records if "queue full" in r.getMessage()]
    assert len(drop_logs) == 1


@pytest.mark.asyncio
async def test_data_callback_error_is_logged(caplog) -> None:
    callbacks = _callbacks()
    callbacks.on_data.side_effect = RuntimeError("bad consumer")
    proto = DataDatagramProtocol(callbacks)
    with caplog.at_level(logging.WARNING, logger="sensorlink.udp_data_rx"):
        proto._process_datagram(b"x|1", ("127.0.0.1", 5000))
    assert any("Error processing datagram" in r.getMessage() for r in caplog.records)


def test_connection_lost_reports_disconnect_unless_closing() -> None:
    callbacks = _callbacks()
    proto = DataDatagramProtocol(callbacks)
    proto.connection_lost(OSError("gone"))
    callbacks.on_disconnected.assert_called_once()

    proto.closing = True
    proto.connection_lost(None)
    callbacks.on_disconnected.assert_called_once()


@pytest.mark.asyncio
async def test_udp_transport_receives_real_datagrams() -> None:
    callbacks = _callbacks()
    udp = UDPTransport(callbacks, host="127.0.0.1", port=0)
    label = await udp.connect()
    assert label.startswith("UDP sensor link 127.0.0.1")
    port = udp._datagram_transport.get_extra_info("sockname")[1]

    loop = asyncio.get_running_loop()
    sender, _ = await loop.create_datagram_endpoint(
        asyncio.DatagramProtocol, remote_addr=("127.0.0.1", port)
    )
    try:
        sender.sendto(b"temp|21.5")
        assert await async_wait_until(lambda: callbacks.on_data.called, timeout_s=2.0)
        callbacks.on_data.assert_called_with("temp", b"21.5")
    finally:
        sender.close()
        await udp.disconnect()
    # Closing our own socket is not a link loss.
    callbacks.on_disconnected.assert_not_called()


@pytest.mark.asyncio
async def test_udp_transport_maps_permission_error(monkeypatch) -> None:
    loop = asyncio.get_running_loop()
    monkeypatch.setattr(
        loop,
        "create_datagram_endpoint",
        AsyncMock(side_effect=PermissionError(errno.EACCES, "Permission denied")),
    )
    udp = UDPTransport(_callbacks(), host="127.0.0.1", port=80)
    with pytest.raises(TransportError) as excinfo:
        await udp.connect()
    assert excinfo.value.kind is TransportErrorKind.permission_denied
    await udp.disconnect()


@pytest.mark.asyncio
async def test_disconnect_without_connect_is_noop() -> None:
    udp = UDPTransport(_callbacks())
    await udp.disconnect()
    assert udp.channel_defaults() == {}
    assert udp.demo_mode is False
