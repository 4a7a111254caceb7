"""Transport connection manager for the streaming (WebSocket) channel.

Owns the connection lifecycle only: connect, probe, receive, detect
closure, reconnect. Every inbound frame goes through the normalizer and
is published on the event bus; no business state is kept here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from ontime_sync.core.errors import TransportError
from ontime_sync.core.event_bus import EventBus
from ontime_sync.core.events import ComponentStatus, EnvelopeReceived, StreamStateChanged
from ontime_sync.core.models import TransportConfig
from ontime_sync.core.normalizer import normalize_frame
from ontime_sync.core.resilience import RecurringTimer, reconnect_delay

logger = logging.getLogger(__name__)

WebSocketConnect = Callable[[str], Awaitable[Any]]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager:
    """Keeps one streaming connection open for as long as it is wanted.

    The server does not reliably push state on connect, so a fixed probe
    set is sent right after opening and a subset is re-sent on a short
    recurring timer while the connection lives. After a drop, a single
    recurring reconnection timer retries until a connection succeeds or
    ``disconnect()`` is called.
    """

    def __init__(
        self,
        url: str,
        event_bus: EventBus,
        config: TransportConfig | None = None,
        *,
        connect_fn: WebSocketConnect | None = None,
    ) -> None:
        self.url = url
        self.event_bus = event_bus
        self.config = config or TransportConfig()
        self._connect_fn = connect_fn or websockets.connect
        self._state = ConnectionState.DISCONNECTED
        self._ws: Any | None = None
        self._reader: asyncio.Task[None] | None = None
        self._wanted = False
        self._probe_timer = RecurringTimer(
            "probe", self._probe, self.config.probe_interval_s
        )
        self._reconnect_timer = RecurringTimer(
            "reconnect",
            self._reconnect_tick,
            lambda attempt: reconnect_delay(self.config.reconnect, attempt),
        )
        self.open_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_armed(self) -> bool:
        return self._reconnect_timer.armed

    @property
    def probe_armed(self) -> bool:
        return self._probe_timer.armed

    # ── Lifecycle ──────────────────────────────────────────────────

    async def connect(self) -> bool:
        """Open the channel. Returns True if this call opened it.

        Calls made while a connection is open or pending are ignored.
        Failures are logged and schedule reconnection; they never raise.
        """
        self._wanted = True
        return await self._open()

    async def disconnect(self) -> None:
        """Tear down the channel and stop all automatic reconnection."""
        self._wanted = False
        await self._reconnect_timer.aclose()
        await self._probe_timer.aclose()

        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        was_connected = self._state is ConnectionState.CONNECTED
        if was_connected:
            self._state = ConnectionState.DISCONNECTED

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
        if ws is not None:
            await self._close_quietly(ws)
        if was_connected:
            logger.info("Disconnected from %s", self.url)
            await self.event_bus.publish(StreamStateChanged(connected=False))
            await self._publish_status("idle", "Streaming channel closed")

    async def _open(self) -> bool:
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug("Connect ignored: channel is %s", self._state.value)
            return False

        self._state = ConnectionState.CONNECTING
        try:
            ws = await self._connect_fn(self.url)
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            raise
        except Exception as exc:
            self._state = ConnectionState.DISCONNECTED
            error = TransportError(f"cannot open {self.url}: {exc}")
            logger.warning("%s", error)
            await self._publish_status("error", str(error))
            self._schedule_reconnect()
            return False

        if not self._wanted:
            # Torn down while the handshake was in flight.
            self._state = ConnectionState.DISCONNECTED
            await self._close_quietly(ws)
            return False

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self.open_count += 1
        self._reconnect_timer.stop()
        self._reader = asyncio.create_task(self._read_loop(ws), name="stream-reader")
        logger.info("Connected to %s", self.url)

        await self.event_bus.publish(StreamStateChanged(connected=True))
        await self._publish_status("running", f"Streaming from {self.url}")
        for topic in self.config.connect_probe_topics:
            await self.send(topic, {})
        if self._ws is ws:
            self._probe_timer.start()
        return True

    def _schedule_reconnect(self) -> None:
        if not self._wanted:
            return
        if self._reconnect_timer.start():
            logger.info(
                "Reconnection scheduled (%s policy, first attempt in %.1fs)",
                self.config.reconnect.policy,
                reconnect_delay(self.config.reconnect, 0),
            )

    async def _reconnect_tick(self) -> None:
        if not self._wanted or self._state is ConnectionState.CONNECTED:
            self._reconnect_timer.stop()
            return
        logger.info("Attempting to reconnect to %s", self.url)
        await self._open()

    # ── Traffic ────────────────────────────────────────────────────

    async def send(self, topic: str, payload: Any = None) -> bool:
        """Send ``{topic, payload}``; silently dropped unless connected."""
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None:
            return False
        message = json.dumps({"topic": topic, "payload": payload if payload is not None else {}})
        try:
            await ws.send(message)
        except Exception as exc:
            # The reader notices the closed socket and handles reconnection.
            logger.debug("Send of %r failed: %s", topic, exc)
            return False
        return True

    async def _probe(self) -> None:
        for topic in self.config.recurring_probe_topics:
            await self.send(topic, {})

    async def _read_loop(self, ws: Any) -> None:
        error: Exception | None = None
        try:
            async for message in ws:
                try:
                    await self._dispatch(message)
                except Exception:
                    logger.warning("Dropping frame that failed to dispatch", exc_info=True)
        except ConnectionClosed as exc:
            error = exc
        except Exception as exc:
            logger.debug("Stream reader failed", exc_info=True)
            error = exc
            # Not a close, so the socket may still be open
            await self._close_quietly(ws)
        await self._handle_closed(ws, error)

    async def _dispatch(self, message: Any) -> None:
        envelope = normalize_frame(message)
        if envelope is None:
            return
        logger.debug("Frame %r (%s)", envelope.topic, envelope.kind.value)
        await self.event_bus.publish(EnvelopeReceived(envelope=envelope, source="stream"))

    async def _handle_closed(self, ws: Any, error: Exception | None) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self._reader = None
        self._state = ConnectionState.DISCONNECTED
        self._probe_timer.stop()

        if error is not None:
            transport_error = TransportError(f"streaming channel dropped: {error}")
            logger.warning("%s", transport_error)
            message = str(transport_error)
        else:
            logger.info("Streaming channel closed by server")
            message = None
        await self.event_bus.publish(StreamStateChanged(connected=False, error=message))
        await self._publish_status("error", message or "Streaming channel closed by server")
        self._schedule_reconnect()

    # ── Helpers ────────────────────────────────────────────────────

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception:
            logger.debug("Closing websocket failed", exc_info=True)

    async def _publish_status(self, status: str, message: str) -> None:
        await self.event_bus.publish(
            ComponentStatus(component="transport", status=status, message=message)
        )
