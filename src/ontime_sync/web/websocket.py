"""WebSocket manager for broadcasting live engine state to rendering clients."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket

from ontime_sync.core.event_bus import EventBus
from ontime_sync.core.events import (
    ComponentStatus,
    ConnectivityChanged,
    RundownUpdated,
    SnapshotUpdated,
)
from ontime_sync.core.models import RuntimeSnapshot

if TYPE_CHECKING:
    from ontime_sync.engine import SyncEngine

logger = logging.getLogger(__name__)


def snapshot_payload(snapshot: RuntimeSnapshot | None) -> dict[str, Any] | None:
    return asdict(snapshot) if snapshot is not None else None


def statuses_payload(engine: SyncEngine) -> list[dict[str, Any]]:
    return [item.to_dict() for item in engine.events_with_status()]


def initial_message(engine: SyncEngine) -> dict[str, Any]:
    """Everything a freshly connected client needs to render."""
    return {
        "type": "hello",
        "data": {
            "snapshot": snapshot_payload(engine.snapshot),
            "events": statuses_payload(engine),
            "custom_fields": [f.to_dict() for f in engine.custom_fields],
            "connectivity": asdict(engine.connectivity),
        },
    }


class ConnectionManager:
    """Manages active WebSocket connections and broadcasts messages."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def active_count(self) -> int:
        return len(self._connections)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._connections.append(ws)
        logger.info("WebSocket client connected (%d active)", self.active_count)

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            if ws in self._connections:
                self._connections.remove(ws)
        logger.info("WebSocket client disconnected (%d active)", self.active_count)

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a JSON message to all connected clients."""
        payload = json.dumps(message, ensure_ascii=False)
        async with self._lock:
            stale: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(payload)
                except Exception:
                    stale.append(ws)
            for ws in stale:
                self._connections.remove(ws)


class WebSocketBridge:
    """Bridges engine events on the bus to WebSocket clients.

    Snapshot and rundown changes are sent together with the recomputed
    event statuses, so clients never derive statuses themselves.
    """

    def __init__(self, engine: SyncEngine, manager: ConnectionManager) -> None:
        self._engine = engine
        self._manager = manager

    @property
    def event_bus(self) -> EventBus:
        return self._engine.event_bus

    def start(self) -> None:
        """Subscribe to relevant events on the bus."""
        self.event_bus.subscribe(SnapshotUpdated, self._on_snapshot)
        self.event_bus.subscribe(RundownUpdated, self._on_rundown)
        self.event_bus.subscribe(ConnectivityChanged, self._on_connectivity)
        self.event_bus.subscribe(ComponentStatus, self._on_status)
        logger.info("WebSocketBridge started")

    def stop(self) -> None:
        """Unsubscribe from the bus."""
        self.event_bus.unsubscribe(SnapshotUpdated, self._on_snapshot)
        self.event_bus.unsubscribe(RundownUpdated, self._on_rundown)
        self.event_bus.unsubscribe(ConnectivityChanged, self._on_connectivity)
        self.event_bus.unsubscribe(ComponentStatus, self._on_status)
        logger.info("WebSocketBridge stopped")

    async def _on_snapshot(self, event: SnapshotUpdated) -> None:
        if self._manager.active_count == 0:
            return
        await self._manager.broadcast({
            "type": "snapshot",
            "data": {
                "snapshot": snapshot_payload(event.snapshot),
                "events": statuses_payload(self._engine),
            },
        })

    async def _on_rundown(self, event: RundownUpdated) -> None:
        if self._manager.active_count == 0:
            return
        await self._manager.broadcast({
            "type": "rundown",
            "data": {
                "events": statuses_payload(self._engine),
                "custom_fields": [f.to_dict() for f in event.rundown.custom_fields],
            },
        })

    async def _on_connectivity(self, event: ConnectivityChanged) -> None:
        await self._manager.broadcast({
            "type": "connectivity",
            "data": asdict(event.connectivity),
        })

    async def _on_status(self, event: ComponentStatus) -> None:
        await self._manager.broadcast({
            "type": "status",
            "data": asdict(event),
        })
