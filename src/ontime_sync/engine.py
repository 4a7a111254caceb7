"""Sync engine: one explicit instance composing every component.

Lifecycle:
    1. Load project data and the rundown over HTTP.
    2. Check server health.
    3. Open the streaming channel (probing and reconnection are automatic).
    4. Arm the poller's periodic timers.
    5. On ``stop()``, cancel every timer, close the channel and freeze
       the store so nothing mutates state afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Coroutine

from ontime_sync.api.commands import CommandDispatcher
from ontime_sync.api.http_client import OntimeHttpClient
from ontime_sync.api.poller import FallbackPoller
from ontime_sync.core.errors import RequestError
from ontime_sync.core.event_bus import EventBus
from ontime_sync.core.events import (
    ComponentStatus,
    ConnectivityChanged,
    EnvelopeReceived,
    HealthChecked,
    RundownUpdated,
    SnapshotUpdated,
    StreamStateChanged,
)
from ontime_sync.core.models import (
    Connectivity,
    CustomField,
    EventStatus,
    EventWithStatus,
    PollerConfig,
    Rundown,
    RuntimeSnapshot,
    ServerConfig,
    TransportConfig,
)
from ontime_sync.core.normalizer import EnvelopeKind
from ontime_sync.core.status import derive_statuses
from ontime_sync.core.store import RuntimeStateStore
from ontime_sync.transport.connection import ConnectionManager, WebSocketConnect

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[RuntimeSnapshot], None]
StatusListener = Callable[[list[EventWithStatus]], None]


@dataclass
class EngineConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)


class SyncEngine:
    """Keeps a live, coherent view of one timer server.

    Construct one per server session and pass it to whatever consumes
    it; there is no module-level instance.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        event_bus: EventBus | None = None,
        http_client: OntimeHttpClient | None = None,
        connect_fn: WebSocketConnect | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._owns_bus = event_bus is None
        self.event_bus = event_bus or EventBus()
        self._owns_http = http_client is None
        self.http = http_client or OntimeHttpClient(self.config.server)
        self.store = RuntimeStateStore()
        self.transport = ConnectionManager(
            self.config.server.resolved_ws_url,
            self.event_bus,
            self.config.transport,
            connect_fn=connect_fn,
        )
        self.poller = FallbackPoller(
            self.http,
            self.store,
            self.event_bus,
            self.config.poller,
            streaming_connected=lambda: self.transport.is_connected,
        )
        self.commands = CommandDispatcher(self.http, self.store, on_invalidate=self.refresh)

        self._connectivity = Connectivity()
        self._status_listeners: list[StatusListener] = []
        self._bus_unsubscribers: list[Callable[[], None]] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._started = False
        self._stopped = False

        self.store.subscribe(self._on_snapshot)
        self.store.subscribe_rundown(self._on_rundown)

    # ── Read access ────────────────────────────────────────────────

    @property
    def snapshot(self) -> RuntimeSnapshot | None:
        return self.store.snapshot

    @property
    def rundown(self) -> Rundown | None:
        return self.store.rundown

    @property
    def custom_fields(self) -> tuple[CustomField, ...]:
        return self.store.custom_fields

    @property
    def connectivity(self) -> Connectivity:
        return self._connectivity

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def events_with_status(self) -> list[EventWithStatus]:
        rundown = self.store.rundown
        events = rundown.ordered_events() if rundown is not None else []
        return derive_statuses(events, self.store.snapshot)

    def current_and_next(
        self, public: bool = False
    ) -> tuple[EventWithStatus | None, EventWithStatus | None]:
        """The running event and the one after it, with rundown data.

        Uses the server's event pointers when present. Otherwise the
        selected event is current and the next non-skipped event in
        rundown order is next.
        """
        statuses = self.events_with_status()
        by_id = {item.id: item for item in statuses}
        snapshot = self.store.snapshot

        now_event = next_event = None
        if snapshot is not None:
            now_event = snapshot.public_event_now if public else snapshot.event_now
            next_event = snapshot.public_event_next if public else snapshot.event_next

        current = by_id.get(now_event.id) if now_event is not None else None
        if current is None:
            current = next((s for s in statuses if s.status is EventStatus.ACTIVE), None)

        upcoming = by_id.get(next_event.id) if next_event is not None else None
        if upcoming is None and current is not None:
            index = statuses.index(current)
            upcoming = next(
                (s for s in statuses[index + 1:] if not s.event.skip and (s.event.is_public or not public)),
                None,
            )
        return current, upcoming

    # ── Subscriptions ──────────────────────────────────────────────

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call *listener* with the current snapshot (if any) and every new one."""
        unsubscribe = self.store.subscribe(listener)
        if self.store.snapshot is not None:
            listener(self.store.snapshot)
        return unsubscribe

    def subscribe_statuses(self, listener: StatusListener) -> Callable[[], None]:
        """Call *listener* with recomputed statuses on every change."""
        self._status_listeners.append(listener)
        if self.store.rundown is not None:
            listener(self.events_with_status())

        def _unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _unsubscribe

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        logger.info("Sync engine starting for %s", self.config.server.base_url)

        self._bus_unsubscribers = [
            self.event_bus.subscribe(EnvelopeReceived, self._on_envelope),
            self.event_bus.subscribe(StreamStateChanged, self._on_stream_state),
            self.event_bus.subscribe(HealthChecked, self._on_health),
        ]

        try:
            await self.poller.load()
        except RequestError as exc:
            logger.error("Initial rundown load failed: %s", exc)
            await self._publish_status("error", f"Rundown unavailable: {exc}")

        await self.poller.check_health()
        await self.transport.connect()
        self.poller.start()
        await self._publish_status("running", "Sync engine started")

    async def stop(self) -> None:
        """Tear everything down. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Sync engine stopping")

        await self.transport.disconnect()
        await self.poller.stop()
        self.store.close()
        self._status_listeners.clear()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for unsubscribe in self._bus_unsubscribers:
            unsubscribe()
        self._bus_unsubscribers.clear()
        if self._owns_bus:
            self.event_bus.close()
        if self._owns_http:
            await self.http.aclose()
        logger.info("Sync engine stopped")

    async def __aenter__(self) -> SyncEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def refresh(self) -> Rundown:
        """Reload project data and the rundown; raises ``RequestError``."""
        return await self.poller.refresh()

    # ── Bus handlers ───────────────────────────────────────────────

    async def _on_envelope(self, event: EnvelopeReceived) -> None:
        envelope = event.envelope
        if envelope.kind is EnvelopeKind.ERROR:
            logger.warning("Server reported an error: %s", envelope.payload)
        if self.store.closed:
            return
        if self.store.merge(envelope, source=event.source):
            await self.event_bus.publish(SnapshotUpdated(snapshot=self.store.snapshot))

    async def _on_stream_state(self, event: StreamStateChanged) -> None:
        await self._set_connectivity(streaming_connected=event.connected)

    async def _on_health(self, event: HealthChecked) -> None:
        await self._set_connectivity(http_reachable=event.reachable)

    async def _set_connectivity(self, **changes: bool) -> None:
        updated = replace(self._connectivity, **changes)
        if updated == self._connectivity:
            return
        self._connectivity = updated
        logger.info(
            "Connectivity: streaming=%s http=%s",
            updated.streaming_connected,
            updated.http_reachable,
        )
        await self.event_bus.publish(ConnectivityChanged(connectivity=updated))

    # ── Store listeners ────────────────────────────────────────────

    def _on_snapshot(self, snapshot: RuntimeSnapshot) -> None:
        self._emit_statuses()

    def _on_rundown(self, rundown: Rundown) -> None:
        self._emit_statuses()
        self._spawn(self.event_bus.publish(RundownUpdated(rundown=rundown)))

    def _emit_statuses(self) -> None:
        if not self._status_listeners:
            return
        statuses = self.events_with_status()
        for listener in list(self._status_listeners):
            try:
                listener(statuses)
            except Exception:
                logger.exception("Status listener %r failed", listener)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _publish_status(self, status: str, message: str) -> None:
        await self.event_bus.publish(
            ComponentStatus(component="engine", status=status, message=message)
        )
