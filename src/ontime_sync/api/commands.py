"""Command dispatcher: one HTTP call per operator action.

Playback commands never touch the local snapshot; the next streamed or
polled update reflects the new truth. Custom-field edits are shown
optimistically and rolled back when the server rejects them.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from ontime_sync.api.http_client import OntimeHttpClient
from ontime_sync.core.errors import RequestError
from ontime_sync.core.models import EVENT_WIRE_FIELDS, MAX_CUE_LENGTH, Event
from ontime_sync.core.store import RuntimeStateStore

logger = logging.getLogger(__name__)

_WIRE_NAMES = {wire: wire for wire in EVENT_WIRE_FIELDS.values()}


class PlaybackCommand(str, Enum):
    START = "start"
    PAUSE = "pause"
    STOP = "stop"
    RELOAD = "reload"
    ROLL = "roll"
    START_NEXT = "start-next"
    START_PREVIOUS = "start-previous"
    LOAD_NEXT = "load-next"
    LOAD_PREVIOUS = "load-previous"


def _check_seconds(seconds: Any) -> float:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ValueError(f"seconds must be a number, got {seconds!r}")
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"seconds must be a finite non-negative number, got {seconds!r}")
    return seconds


def _wire_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _custom_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


class CommandDispatcher:
    """Issues control requests on behalf of an operator."""

    def __init__(
        self,
        http: OntimeHttpClient,
        store: RuntimeStateStore,
        *,
        on_invalidate: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        self.http = http
        self.store = store
        self._on_invalidate = on_invalidate

    # ── Playback ───────────────────────────────────────────────────

    async def playback(self, command: PlaybackCommand | str, payload: dict[str, Any] | None = None) -> Any:
        """Send any playback command by name (``start``, ``start-next`` ...)."""
        command = PlaybackCommand(command)
        return await self.http.send_playback_command(command.value, payload)

    async def start(self) -> Any:
        return await self.playback(PlaybackCommand.START)

    async def start_by_id(self, event_id: str) -> Any:
        if not event_id:
            raise ValueError("event_id is required")
        return await self.playback(PlaybackCommand.START, {"eventId": event_id})

    async def start_by_index(self, index: int) -> Any:
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise ValueError(f"index must be a non-negative integer, got {index!r}")
        return await self.playback(PlaybackCommand.START, {"eventIndex": index})

    async def start_by_cue(self, cue: str) -> Any:
        if not cue:
            raise ValueError("cue is required")
        return await self.playback(PlaybackCommand.START, {"eventCue": cue})

    async def start_next(self) -> Any:
        return await self.playback(PlaybackCommand.START_NEXT)

    async def start_previous(self) -> Any:
        return await self.playback(PlaybackCommand.START_PREVIOUS)

    async def pause(self) -> Any:
        return await self.playback(PlaybackCommand.PAUSE)

    async def stop(self) -> Any:
        return await self.playback(PlaybackCommand.STOP)

    async def reload(self) -> Any:
        return await self.playback(PlaybackCommand.RELOAD)

    async def roll(self) -> Any:
        return await self.playback(PlaybackCommand.ROLL)

    async def load_next(self) -> Any:
        return await self.playback(PlaybackCommand.LOAD_NEXT)

    async def load_previous(self) -> Any:
        return await self.playback(PlaybackCommand.LOAD_PREVIOUS)

    async def add_time(self, seconds: float) -> Any:
        return await self.http.add_time(_check_seconds(seconds))

    async def remove_time(self, seconds: float) -> Any:
        return await self.http.remove_time(_check_seconds(seconds))

    # ── Event edits ────────────────────────────────────────────────

    async def update_event(self, event_id: str, **fields: Any) -> Event | None:
        """PATCH event fields given by attribute (``time_warning``) or wire name.

        The server's copy of the event, when returned, replaces the local
        one; otherwise the rundown is reloaded.
        """
        return await self.apply_event_updates(event_id, fields)

    async def apply_event_updates(self, event_id: str, fields: Mapping[str, Any]) -> Event | None:
        """Like ``update_event`` but takes the fields as one mapping."""
        if not fields:
            raise ValueError("no fields to update")
        updates: dict[str, Any] = {}
        for name, value in fields.items():
            wire = EVENT_WIRE_FIELDS.get(name) or _WIRE_NAMES.get(name)
            if wire is None:
                raise ValueError(f"unknown event field: {name!r}")
            updates[wire] = _wire_value(value)

        cue = updates.get("cue")
        if cue is not None and (not isinstance(cue, str) or len(cue) > MAX_CUE_LENGTH):
            raise ValueError(f"cue must be a string of at most {MAX_CUE_LENGTH} characters")

        event = await self.http.update_event(event_id, updates)
        if event is not None and event.id == event_id:
            self.store.update_event(event)
        else:
            await self._invalidate()
        return event

    async def update_custom_field(self, event_id: str, field_id: str, value: Any) -> Any:
        """Set one custom field, showing the value before the server confirms.

        On failure the shown value reverts and ``RequestError`` is raised.
        """
        text = _custom_value(value)
        token = self.store.begin_custom_edit(event_id, field_id, text)
        try:
            result = await self.http.update_custom_field(event_id, field_id, text)
        except RequestError:
            logger.warning("Custom field %s on %s rejected; rolling back", field_id, event_id)
            self.store.settle_custom_edit(token, ok=False)
            raise
        except asyncio.CancelledError:
            self.store.settle_custom_edit(token, ok=False)
            raise
        self.store.settle_custom_edit(token, ok=True)
        return result

    async def _invalidate(self) -> None:
        if self._on_invalidate is None or self.store.closed:
            return
        try:
            await self._on_invalidate()
        except RequestError as exc:
            logger.warning("Rundown reload after edit failed: %s", exc)
