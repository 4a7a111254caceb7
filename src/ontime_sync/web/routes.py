"""REST API routes exposing the sync engine to rendering clients."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Optional

from fastapi import APIRouter, Body, Request, WebSocket, WebSocketDisconnect

from ontime_sync.web.websocket import (
    ConnectionManager,
    initial_message,
    snapshot_payload,
    statuses_payload,
)

if TYPE_CHECKING:
    from ontime_sync.engine import SyncEngine

router = APIRouter()


class WebState:
    """Latest component statuses, kept for ``/api/status``."""

    def __init__(self) -> None:
        self.component_status: dict[str, dict[str, Any]] = {}

    def update_component_status(self, data: dict[str, Any]) -> None:
        component = data.get("component", "unknown")
        self.component_status[component] = data


def _get_engine(request: Request) -> SyncEngine:
    return request.app.state.engine


def _get_state(request: Request) -> WebState:
    return request.app.state.web_state


def _get_manager(request: Request) -> ConnectionManager:
    return request.app.state.ws_manager


# ── Reads ─────────────────────────────────────────────────────────


@router.get("/api/status")
async def get_status(request: Request) -> dict[str, Any]:
    """Return connectivity and component statuses."""
    engine = _get_engine(request)
    return {
        "running": engine.running,
        "connectivity": asdict(engine.connectivity),
        "components": _get_state(request).component_status,
        "websocket_clients": _get_manager(request).active_count,
    }


@router.get("/api/snapshot")
async def get_snapshot(request: Request) -> dict[str, Any]:
    return {"snapshot": snapshot_payload(_get_engine(request).snapshot)}


@router.get("/api/events")
async def get_events(request: Request) -> dict[str, Any]:
    """Return the rundown with derived statuses, plus current and next."""
    engine = _get_engine(request)
    current, upcoming = engine.current_and_next()
    return {
        "events": statuses_payload(engine),
        "current": current.to_dict() if current is not None else None,
        "next": upcoming.to_dict() if upcoming is not None else None,
    }


@router.get("/api/custom-fields")
async def get_custom_fields(request: Request) -> dict[str, Any]:
    return {"custom_fields": [f.to_dict() for f in _get_engine(request).custom_fields]}


@router.get("/api/project")
async def get_project(request: Request) -> dict[str, Any]:
    project = _get_engine(request).poller.project
    return {"project": asdict(project) if project is not None else None}


# ── Commands ──────────────────────────────────────────────────────


@router.post("/api/playback/{command}")
async def post_playback(
    request: Request,
    command: str,
    body: Optional[dict[str, Any]] = Body(default=None),
) -> dict[str, Any]:
    """Forward a playback command; the body carries eventId/eventIndex/eventCue."""
    await _get_engine(request).commands.playback(command, body)
    return {"ok": True}


@router.post("/api/time/{direction}")
async def post_time(request: Request, direction: str, body: dict[str, Any]) -> dict[str, Any]:
    commands = _get_engine(request).commands
    seconds = body.get("seconds")
    if direction == "add":
        await commands.add_time(seconds)
    elif direction == "remove":
        await commands.remove_time(seconds)
    else:
        raise ValueError(f"unknown time direction: {direction!r}")
    return {"ok": True}


@router.patch("/api/events/{event_id}")
async def patch_event(request: Request, event_id: str, body: dict[str, Any]) -> dict[str, Any]:
    event = await _get_engine(request).commands.apply_event_updates(event_id, body)
    return {"ok": True, "event": event.to_dict() if event is not None else None}


@router.patch("/api/events/{event_id}/custom/{field_id}")
async def patch_custom_field(
    request: Request, event_id: str, field_id: str, body: dict[str, Any]
) -> dict[str, Any]:
    if "value" not in body:
        raise ValueError("value is required")
    await _get_engine(request).commands.update_custom_field(event_id, field_id, body["value"])
    return {"ok": True}


@router.post("/api/refresh")
async def post_refresh(request: Request) -> dict[str, Any]:
    rundown = await _get_engine(request).refresh()
    return {"ok": True, "events": len(rundown.order)}


# ── WebSocket endpoint ────────────────────────────────────────────


@router.websocket("/ws/live")
async def websocket_live(ws: WebSocket) -> None:
    """WebSocket endpoint for live state streaming."""
    manager: ConnectionManager = ws.app.state.ws_manager
    await manager.connect(ws)
    try:
        await ws.send_json(initial_message(ws.app.state.engine))
        while True:
            # Keep connection alive; client may send pings
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(ws)
