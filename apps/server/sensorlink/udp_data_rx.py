"""Live sensor link: UTF-8 text datagrams received over UDP.

Datagram format::

    [<channel>|]<payload>

The optional prefix is forwarded as the channel hint; the payload goes to
the ingestion pipeline untouched.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
import time

from .constants import DEFAULT_UDP_DATA_PORT
from .errors import TransportError, TransportErrorKind
from .transport import Transport, TransportCallbacks

LOGGER = logging.getLogger(__name__)

_QUEUE_DROP_LOG_INTERVAL_S: float = 10.0

_HINT_SEPARATOR = b"|"

_NOT_FOUND_ERRNOS = frozenset(
    code for code in (errno.EADDRNOTAVAIL, errno.ENODEV, getattr(errno, "ENXIO", None)) if code
)
"""Bind errors meaning the requested interface or address does not exist."""


def split_datagram(data: bytes) -> tuple[str | None, bytes]:
    """Split ``b"temp|23.5"`` into ``("temp", b"23.5")``."""
    head, found, tail = data.partition(_HINT_SEPARATOR)
    if not found:
        return None, data
    hint = head.decode("utf-8", errors="replace").strip()
    return (hint or None), tail


def classify_bind_error(exc: BaseException) -> TransportError:
    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return TransportError(TransportErrorKind.cancelled, "connect cancelled")
    if isinstance(exc, PermissionError):
        return TransportError(TransportErrorKind.permission_denied, str(exc))
    if isinstance(exc, socket.gaierror):
        return TransportError(TransportErrorKind.not_found, str(exc))
    if isinstance(exc, OSError) and exc.errno in _NOT_FOUND_ERRNOS:
        return TransportError(TransportErrorKind.not_found, str(exc))
    return TransportError(TransportErrorKind.other, str(exc) or type(exc).__name__)


class DataDatagramProtocol(asyncio.DatagramProtocol):
    def __init__(
        self,
        callbacks: TransportCallbacks,
        queue_maxsize: int = 1024,
        queue_drop_log_interval_s: float = _QUEUE_DROP_LOG_INTERVAL_S,
    ):
        self.callbacks = callbacks
        self.transport: asyncio.DatagramTransport | None = None
        self._queue: asyncio.Queue[tuple[bytes, tuple[str, int]]] = asyncio.Queue(
            maxsize=max(1, queue_maxsize)
        )
        self._queue_drop_log_interval_s = max(0.0, float(queue_drop_log_interval_s))
        self._last_queue_drop_log_ts = 0.0
        self._suppressed_queue_drop_warnings = 0
        self.dropped_datagrams = 0
        self.closing = False

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def connection_lost(self, exc: Exception | None) -> None:
        self.transport = None
        if self.closing:
            return
        if exc is not None:
            LOGGER.warning("UDP data socket lost: %s", exc)
        self.callbacks.on_disconnected()

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if not data:
            return
        try:
            self._queue.put_nowait((data, addr))
        except asyncio.QueueFull:
            self.dropped_datagrams += 1
            now = time.monotonic()
            if (now - self._last_queue_drop_log_ts) >= self._queue_drop_log_interval_s:
                suppressed = self._suppressed_queue_drop_warnings
                self._suppressed_queue_drop_warnings = 0
                self._last_queue_drop_log_ts = now
                if suppressed > 0:
                    LOGGER.warning(
                        "UDP ingest queue full; dropping datagram from %s; "
                        "suppressed %d additional drop warnings",
                        addr,
                        suppressed,
                    )
                else:
                    LOGGER.warning("UDP ingest queue full; dropping datagram from %s", addr)
            else:
                self._suppressed_queue_drop_warnings += 1

    async def process_queue(self) -> None:
        while True:
            data, addr = await self._queue.get()
            try:
                self._process_datagram(data, addr)
            finally:
                self._queue.task_done()

    def _process_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        hint, payload = split_datagram(data)
        try:
            self.callbacks.on_data(hint, payload)
        except Exception:
            LOGGER.warning(
                "Error processing datagram from %s (hint=%s)",
                addr,
                hint,
                exc_info=True,
            )


class UDPTransport(Transport):
    def __init__(
        self,
        callbacks: TransportCallbacks,
        *,
        host: str = "0.0.0.0",
        port: int = DEFAULT_UDP_DATA_PORT,
        queue_maxsize: int = 1024,
    ):
        super().__init__(callbacks)
        self.host = host
        self.port = port
        self.queue_maxsize = queue_maxsize
        self._protocol: DataDatagramProtocol | None = None
        self._datagram_transport: asyncio.DatagramTransport | None = None
        self._consumer: asyncio.Task[None] | None = None

    @property
    def device_label(self) -> str:
        return f"UDP sensor link {self.host}:{self.port}"

    async def connect(self) -> str:
        loop = asyncio.get_running_loop()
        protocol = DataDatagramProtocol(self.callbacks, queue_maxsize=self.queue_maxsize)
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: protocol,
                local_addr=(self.host, self.port),
            )
        except (OSError, asyncio.CancelledError) as exc:
            raise classify_bind_error(exc) from exc
        self._protocol = protocol
        self._datagram_transport = transport
        self._consumer = asyncio.create_task(protocol.process_queue(), name="udp-data-consumer")
        LOGGER.info("Listening for sensor datagrams on %s:%d", self.host, self.port)
        return self.device_label

    async def disconnect(self) -> None:
        protocol, self._protocol = self._protocol, None
        transport, self._datagram_transport = self._datagram_transport, None
        consumer, self._consumer = self._consumer, None
        if protocol is not None:
            protocol.closing = True
        if transport is not None:
            try:
                transport.close()
            except Exception:
                LOGGER.warning("Error closing UDP data transport", exc_info=True)
        if consumer is not None:
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
