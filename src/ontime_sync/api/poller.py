"""Fallback poller: rundown loading, optional runtime polling, health checks.

Periodic failures here are logged and reported as component status.
They never touch the streaming connection's lifecycle.
"""

from __future__ import annotations

import logging
from typing import Callable

from ontime_sync.api.http_client import OntimeHttpClient
from ontime_sync.core.errors import RequestError, UnreachableServer
from ontime_sync.core.event_bus import EventBus
from ontime_sync.core.events import ComponentStatus, EnvelopeReceived, HealthChecked
from ontime_sync.core.models import PollerConfig, ProjectData, Rundown
from ontime_sync.core.normalizer import envelope_from_value
from ontime_sync.core.resilience import RecurringTimer
from ontime_sync.core.store import RuntimeStateStore

logger = logging.getLogger(__name__)

POLL_TOPIC = "poll"


class FallbackPoller:
    """Pulls state over HTTP where the stream cannot be relied on."""

    def __init__(
        self,
        http: OntimeHttpClient,
        store: RuntimeStateStore,
        event_bus: EventBus,
        config: PollerConfig | None = None,
        *,
        streaming_connected: Callable[[], bool] = lambda: False,
    ) -> None:
        self.http = http
        self.store = store
        self.event_bus = event_bus
        self.config = config or PollerConfig()
        self._streaming_connected = streaming_connected
        self.project: ProjectData | None = None
        self._reachable: bool | None = None
        self._runtime_timer = RecurringTimer(
            "runtime-poll", self._runtime_tick, self.config.runtime_poll_interval_s
        )
        self._refresh_timer = RecurringTimer(
            "rundown-refresh", self._refresh_tick, self.config.rundown_refresh_interval_s
        )
        self._health_timer = RecurringTimer(
            "health", self._health_tick, self.config.health_interval_s
        )

    @property
    def http_reachable(self) -> bool:
        return bool(self._reachable)

    @property
    def timers(self) -> tuple[RecurringTimer, ...]:
        return (self._runtime_timer, self._refresh_timer, self._health_timer)

    # ── One-shot operations ────────────────────────────────────────

    async def load(self) -> Rundown:
        """Fetch project data and the rundown, and install them in the store.

        A project-data failure only costs the explicit field definitions
        (they are then inferred from event values). A rundown failure is
        raised as ``RequestError``.
        """
        custom_fields = None
        try:
            self.project = await self.http.get_project_data()
            if self.project.custom_fields:
                custom_fields = list(self.project.custom_fields)
        except RequestError as exc:
            logger.warning("Project data unavailable, custom fields will be inferred: %s", exc)

        rundown = await self.http.get_normalized_rundown(custom_fields)
        self.store.set_rundown(rundown)
        logger.info(
            "Loaded rundown: %d events, %d custom fields",
            len(rundown.order),
            len(rundown.custom_fields),
        )
        return rundown

    async def refresh(self) -> Rundown:
        return await self.load()

    async def poll_runtime(self) -> bool:
        """Fetch one runtime snapshot and publish it like a streamed frame."""
        data = await self.http.get_runtime_data()
        envelope = envelope_from_value({"topic": POLL_TOPIC, "payload": dict(data)})
        if envelope is None:
            return False
        await self.event_bus.publish(EnvelopeReceived(envelope=envelope, source="poll"))
        return True

    async def check_health(self) -> bool:
        error: str | None = None
        try:
            await self.http.ping()
            reachable = True
        except UnreachableServer as exc:
            reachable = False
            error = str(exc)

        if reachable != self._reachable:
            if reachable:
                logger.info("Server reachable over HTTP")
            else:
                logger.warning("Server unreachable: %s", error)
        self._reachable = reachable
        await self.event_bus.publish(HealthChecked(reachable=reachable, error=error))
        return reachable

    # ── Periodic timers ────────────────────────────────────────────

    def start(self) -> None:
        if self.config.health_interval_s > 0:
            self._health_timer.start()
        if self.config.rundown_refresh_interval_s > 0:
            self._refresh_timer.start()
        if self.config.runtime_poll_enabled and self.config.runtime_poll_interval_s > 0:
            self._runtime_timer.start()

    async def stop(self) -> None:
        for timer in self.timers:
            await timer.aclose()

    async def _runtime_tick(self) -> None:
        if self.config.runtime_poll_only_when_disconnected and self._streaming_connected():
            return
        try:
            await self.poll_runtime()
        except RequestError as exc:
            logger.warning("Runtime poll failed: %s", exc)
            await self._publish_status("error", f"Runtime poll failed: {exc}")

    async def _refresh_tick(self) -> None:
        try:
            await self.load()
        except RequestError as exc:
            logger.warning("Rundown refresh failed: %s", exc)
            await self._publish_status("error", f"Rundown refresh failed: {exc}")

    async def _health_tick(self) -> None:
        await self.check_health()

    async def _publish_status(self, status: str, message: str) -> None:
        await self.event_bus.publish(
            ComponentStatus(component="poller", status=status, message=message)
        )
