"""Connection lifecycle: the one place transports, monitor and store meet.

``SessionController`` owns the active transport, the staleness monitor task
and the pending demo-fallback timer.  ``_teardown()`` cancels all three
together and runs before every connect, so at most one stream feeds the
store at any time.  Callbacks handed to a transport are tied to the
connection generation they were created for; anything a torn-down
transport still delivers is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .constants import MS_PER_SECOND, PERMISSION_FALLBACK_DELAY_MS
from .domain_models import ConnectionState, SessionRecord, SessionSnapshot
from .errors import ConnectionBusyError, TransportError, TransportErrorKind
from .ingest import IngestionPipeline, IngestResult
from .monitor import StalenessMonitor
from .store import SessionStore
from .transport import Transport, TransportCallbacks

LOGGER = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Access to the sensor link was denied. Switching to demo mode."
GENERIC_CONNECT_ERROR = "Failed to connect"

LiveTransportFactory = Callable[[TransportCallbacks], Transport]
SimulationFactory = Callable[[TransportCallbacks, bool], Transport]
SessionSink = Callable[[SessionRecord], object]


class SessionController:
    def __init__(
        self,
        store: SessionStore,
        *,
        live_transport_factory: LiveTransportFactory,
        simulation_factory: SimulationFactory,
        pipeline: IngestionPipeline | None = None,
        monitor: StalenessMonitor | None = None,
        auto_fallback_to_simulation: bool = True,
        permission_fallback_delay_ms: int = PERMISSION_FALLBACK_DELAY_MS,
        session_sink: SessionSink | None = None,
    ):
        self.store = store
        self.pipeline = pipeline if pipeline is not None else IngestionPipeline(store)
        self.monitor = monitor if monitor is not None else StalenessMonitor(store)
        self._live_transport_factory = live_transport_factory
        self._simulation_factory = simulation_factory
        self.auto_fallback_to_simulation = auto_fallback_to_simulation
        self.permission_fallback_delay_s = max(0.0, permission_fallback_delay_ms / MS_PER_SECOND)
        self.session_sink = session_sink
        self._transport: Transport | None = None
        self._fallback_task: asyncio.Task[None] | None = None
        self._teardown_tasks: set[asyncio.Task[None]] = set()
        self._generation = 0
        self._session_label: str | None = None
        self._session_saved = False

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def fallback_pending(self) -> bool:
        return self._fallback_task is not None and not self._fallback_task.done()

    # -- transport callbacks --------------------------------------------------

    def _callbacks(self, generation: int) -> TransportCallbacks:
        def on_data(channel_hint: str | None, payload: bytes | str) -> None:
            if generation == self._generation:
                self.handle_data(channel_hint, payload)

        def on_disconnected() -> None:
            if generation == self._generation:
                self.handle_transport_disconnected()

        def on_channel_dropout(channel_id: str) -> None:
            if generation == self._generation:
                self.handle_channel_dropout(channel_id)

        return TransportCallbacks(
            on_data=on_data,
            on_disconnected=on_disconnected,
            on_channel_dropout=on_channel_dropout,
        )

    def handle_data(self, channel_hint: str | None, payload: bytes | str) -> IngestResult:
        return self.pipeline.ingest(channel_hint, payload)

    def handle_transport_disconnected(self) -> None:
        """React to the link going away on its own.  Idempotent."""
        transport, self._transport = self._transport, None
        self._generation += 1
        if transport is None and not self.store.get_snapshot().is_connected:
            return
        LOGGER.warning("Sensor link disconnected unexpectedly")
        was_connected = self.store.get_snapshot().is_connected
        self.store.mark_disconnected()
        if was_connected:
            self._persist_session()
        task = asyncio.create_task(self._release_after_loss(transport), name="transport-release")
        self._teardown_tasks.add(task)
        task.add_done_callback(self._teardown_tasks.discard)

    def handle_channel_dropout(self, channel_id: str) -> None:
        LOGGER.info("Channel %s reported dropout; marking inactive", channel_id)
        self.store.mark_inactive(channel_id)

    # -- lifecycle ------------------------------------------------------------

    async def connect(
        self,
        use_simulation: bool = False,
        *,
        fallback: bool = False,
    ) -> SessionSnapshot:
        """Open a live link, or the simulation when *use_simulation* is set.

        Raises :class:`ConnectionBusyError` unless the session is
        disconnected.  Transport failures never propagate: they end in
        ``disconnected`` with ``last_error`` set as appropriate.
        """
        if not self.store.begin_connecting():
            raise ConnectionBusyError(
                f"cannot connect while {self.store.get_snapshot().connection_state}"
            )
        await self._teardown()
        self._generation += 1
        callbacks = self._callbacks(self._generation)
        if use_simulation:
            transport = self._simulation_factory(callbacks, fallback)
        else:
            transport = self._live_transport_factory(callbacks)
        self._transport = transport
        try:
            label = await transport.connect()
        except TransportError as exc:
            self._transport = None
            await self._release(transport)
            self._handle_connect_failure(exc, use_simulation=use_simulation)
            return self.store.get_snapshot()
        except asyncio.CancelledError:
            self._transport = None
            await self._release(transport)
            self.store.mark_connection_failed(None)
            raise

        if self._transport is not transport:
            # disconnect() ran while the link was opening.
            await self._release(transport)
            return self.store.get_snapshot()
        if self._session_saved:
            # The previous session went to the sink; do not record it twice.
            self.store.reset()
            self._session_saved = False
        defaults = transport.channel_defaults()
        if defaults:
            self.store.register_channels(defaults)
        self._session_label = label
        self.store.mark_connected(label, demo_mode=transport.demo_mode)
        self.monitor.start()
        LOGGER.info("Connected to %s (demo=%s)", label, transport.demo_mode)
        return self.store.get_snapshot()

    def _handle_connect_failure(self, exc: TransportError, *, use_simulation: bool) -> None:
        if exc.kind is TransportErrorKind.permission_denied:
            LOGGER.warning("Sensor link access denied: %s", exc.message)
            self.store.mark_connection_failed(PERMISSION_DENIED_MESSAGE)
            if self.auto_fallback_to_simulation and not use_simulation:
                self._schedule_fallback()
        elif not exc.user_visible:
            LOGGER.info("Connect aborted (%s): %s", exc.kind, exc.message)
            self.store.mark_connection_failed(None)
        else:
            LOGGER.warning("Connect failed: %s", exc.message)
            self.store.mark_connection_failed(exc.message or GENERIC_CONNECT_ERROR)

    def _schedule_fallback(self) -> None:
        self._cancel_fallback()
        self._fallback_task = asyncio.create_task(
            self._fallback_after_delay(), name="simulation-fallback"
        )

    async def _fallback_after_delay(self) -> None:
        await asyncio.sleep(self.permission_fallback_delay_s)
        self._fallback_task = None
        LOGGER.info("Falling back to demo mode")
        try:
            await self.connect(use_simulation=True, fallback=True)
        except ConnectionBusyError:
            LOGGER.info("Demo fallback skipped; another connection is in progress")

    def _cancel_fallback(self) -> None:
        task, self._fallback_task = self._fallback_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _release(self, transport: Transport | None) -> None:
        if transport is None:
            return
        try:
            await transport.disconnect()
        except Exception:
            LOGGER.warning("Error disconnecting transport", exc_info=True)

    async def _release_after_loss(self, transport: Transport | None) -> None:
        await self.monitor.stop()
        await self._release(transport)

    async def _teardown(self) -> None:
        """Cancel transport, monitor and fallback timer as one group."""
        self._cancel_fallback()
        transport, self._transport = self._transport, None
        self._generation += 1
        await self.monitor.stop()
        await self._release(transport)
        if self._teardown_tasks:
            await asyncio.gather(*list(self._teardown_tasks), return_exceptions=True)

    async def disconnect(self) -> SessionSnapshot:
        """Close the session.  Calling it again, or before connecting, is a no-op."""
        was_connected = self.store.get_snapshot().is_connected
        await self._teardown()
        self.store.mark_disconnected()
        if was_connected:
            LOGGER.info("Disconnected from %s", self._session_label)
            self._persist_session()
        return self.store.get_snapshot()

    def reset(self) -> SessionSnapshot:
        self._session_saved = False
        return self.store.reset()

    def finalize_session(self) -> SessionRecord | None:
        """Build the persistence record of the current session, if it has data."""
        snapshot = self.store.get_snapshot()
        if not snapshot.readings:
            return None
        return SessionRecord.from_snapshot(
            snapshot,
            end_time=self.store.now(),
            device_name=snapshot.device_label or self._session_label,
        )

    def _persist_session(self) -> None:
        if self.session_sink is None:
            return
        record = self.finalize_session()
        if record is None:
            return
        try:
            self.session_sink(record)
        except Exception:
            LOGGER.warning("Failed to persist session record", exc_info=True)
            return
        self._session_saved = True

    async def shutdown(self) -> None:
        if self.store.get_snapshot().connection_state is not ConnectionState.disconnected:
            await self.disconnect()
        else:
            await self._teardown()
