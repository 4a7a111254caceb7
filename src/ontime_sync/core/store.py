"""Runtime State Store: the single authoritative in-memory view.

Holds the live ``RuntimeSnapshot`` and the rundown. It is the only
place either is mutated. Snapshot merges are last-write-wins per slice:
the protocol carries no sequence numbers, so a later-arriving message
always supersedes an earlier one whether it came from the stream or the
poller. Out-of-order delivery across the two channels is possible and
is not corrected here.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping

from ontime_sync.core.models import (
    CustomField,
    Event,
    PlaybackState,
    Rundown,
    RuntimeInfo,
    RuntimeSnapshot,
    TimerState,
)
from ontime_sync.core.normalizer import Envelope

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[RuntimeSnapshot], None]
RundownListener = Callable[[Rundown], None]

# Wire key -> (snapshot attribute, parser)
_SLICES: dict[str, tuple[str, Callable[[Mapping[str, Any]], Any]]] = {
    "timer": ("timer", TimerState.from_dict),
    "playback": ("playback", PlaybackState.from_dict),
    "runtime": ("runtime", RuntimeInfo.from_dict),
    "message": ("message", dict),
    "eventNow": ("event_now", Event.from_dict),
    "eventNext": ("event_next", Event.from_dict),
    "publicEventNow": ("public_event_now", Event.from_dict),
    "publicEventNext": ("public_event_next", Event.from_dict),
}

_TIMER_KEYS = frozenset({"current", "duration", "expectedFinish", "startedAt", "addedTime"})
_PLAYBACK_KEYS = frozenset({"state", "selectedEventId", "loadedEventId"})
_TIMER_TOPICS = frozenset({"timer", "get-timer"})
_PLAYBACK_TOPICS = frozenset({"playback", "get-playback"})
_CLOCK_TOPICS = frozenset({"clock", "ontime-clock"})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class _FieldEdits:
    """In-flight optimistic edits of one (event, custom field) pair."""

    baseline: str | None  # Last value known to be on the server
    values: dict[int, str] = field(default_factory=dict)
    outcomes: dict[int, bool | None] = field(default_factory=dict)

    def settled(self) -> bool:
        return all(o is not None for o in self.outcomes.values())

    def display_value(self) -> str | None:
        latest = max(self.values)
        if self.outcomes[latest] is not False:
            return self.values[latest]
        confirmed = [t for t, ok in self.outcomes.items() if ok]
        if confirmed:
            return self.values[max(confirmed)]
        return self.baseline


class RuntimeStateStore:
    """Owns the live snapshot and rundown; notifies listeners synchronously."""

    def __init__(self) -> None:
        self._snapshot: RuntimeSnapshot | None = None
        self._rundown: Rundown | None = None
        self._snapshot_listeners: list[SnapshotListener] = []
        self._rundown_listeners: list[RundownListener] = []
        self._edits: dict[tuple[str, str], _FieldEdits] = {}
        self._edit_keys: dict[int, tuple[str, str]] = {}
        self._tokens = itertools.count(1)
        self._closed = False

    # ── Read access ────────────────────────────────────────────────

    @property
    def snapshot(self) -> RuntimeSnapshot | None:
        return self._snapshot

    @property
    def rundown(self) -> Rundown | None:
        return self._rundown

    @property
    def custom_fields(self) -> tuple[CustomField, ...]:
        return self._rundown.custom_fields if self._rundown is not None else ()

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Subscriptions ──────────────────────────────────────────────

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call *listener* with every new snapshot; returns an unsubscribe callable."""
        self._snapshot_listeners.append(listener)
        return lambda: self._remove(self._snapshot_listeners, listener)

    def subscribe_rundown(self, listener: RundownListener) -> Callable[[], None]:
        self._rundown_listeners.append(listener)
        return lambda: self._remove(self._rundown_listeners, listener)

    @staticmethod
    def _remove(listeners: list[Any], listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    @staticmethod
    def _notify(listeners: list[Any], value: Any) -> None:
        for listener in list(listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Store listener %r failed", listener)

    # ── Snapshot merge ─────────────────────────────────────────────

    def merge(self, envelope: Envelope, source: str = "") -> bool:
        """Merge one normalized envelope into the live snapshot.

        Each snapshot slice present in the payload replaces the current
        one; absent slices are left untouched. Returns True if the
        snapshot changed (and listeners were notified).
        """
        if self._closed:
            return False
        updates = self._extract_slices(envelope)
        if not updates:
            logger.debug("Envelope %r carried no snapshot data", envelope.topic)
            return False
        base = self._snapshot if self._snapshot is not None else RuntimeSnapshot()
        self._snapshot = replace(base, **updates, source=source, updated_at=time.time())
        self._notify(self._snapshot_listeners, self._snapshot)
        return True

    def _extract_slices(self, envelope: Envelope) -> dict[str, Any]:
        payload = envelope.payload
        if not isinstance(payload, Mapping):
            if envelope.topic in _CLOCK_TOPICS and _is_number(payload):
                return {"runtime": self._with_clock(None, payload)}
            return {}

        payload = self._scoped_payload(envelope.topic, payload)
        updates: dict[str, Any] = {}
        for key, (attr, parse) in _SLICES.items():
            if key not in payload:
                continue
            raw = payload[key]
            if raw is None:
                updates[attr] = None
            elif isinstance(raw, Mapping):
                updates[attr] = parse(raw)
            else:
                logger.debug("Ignoring non-object %r slice in %r", key, envelope.topic)

        clock = payload.get("clock")
        if _is_number(clock) and not isinstance(payload.get("runtime"), Mapping):
            updates["runtime"] = self._with_clock(updates.get("runtime"), clock)
        return updates

    def _with_clock(self, runtime: RuntimeInfo | None, clock: float) -> RuntimeInfo:
        if runtime is None and self._snapshot is not None:
            runtime = self._snapshot.runtime
        return replace(runtime or RuntimeInfo(), current_time=clock)

    @staticmethod
    def _scoped_payload(topic: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        """Wrap bare timer/playback payloads sent under their own topic."""
        if topic in _TIMER_TOPICS and "timer" not in payload and _TIMER_KEYS & payload.keys():
            return {"timer": payload}
        if topic in _PLAYBACK_TOPICS and "playback" not in payload and _PLAYBACK_KEYS & payload.keys():
            return {"playback": payload}
        return payload

    # ── Rundown ────────────────────────────────────────────────────

    def set_rundown(self, rundown: Rundown) -> None:
        """Install an authoritative rundown, discarding pending edit bookkeeping."""
        if self._closed:
            return
        self._rundown = rundown
        self._edits.clear()
        self._edit_keys.clear()
        self._notify(self._rundown_listeners, rundown)

    def update_event(self, event: Event) -> bool:
        """Replace the local copy of a server-confirmed event."""
        if self._closed or self._rundown is None or event.id not in self._rundown.events:
            return False
        self._replace_event(event)
        return True

    def _replace_event(self, event: Event) -> None:
        assert self._rundown is not None
        events = dict(self._rundown.events)
        events[event.id] = event
        self._rundown = replace(self._rundown, events=events)
        self._notify(self._rundown_listeners, self._rundown)

    def _set_custom_value(self, event_id: str, field_id: str, value: str | None) -> None:
        event = self._rundown.events.get(event_id) if self._rundown is not None else None
        if event is None:
            return
        custom = dict(event.custom)
        if value is None:
            custom.pop(field_id, None)
        else:
            custom[field_id] = value
        self._replace_event(replace(event, custom=custom))

    # ── Optimistic custom-field edits ──────────────────────────────

    def begin_custom_edit(self, event_id: str, field_id: str, value: str) -> int | None:
        """Show *value* immediately and start tracking the edit.

        Returns a token for ``settle_custom_edit``, or None when the event
        is not in the local rundown (nothing to show optimistically).
        """
        if self._closed or self._rundown is None:
            return None
        event = self._rundown.events.get(event_id)
        if event is None:
            return None
        key = (event_id, field_id)
        edits = self._edits.get(key)
        if edits is None:
            edits = self._edits[key] = _FieldEdits(baseline=event.custom.get(field_id))
        token = next(self._tokens)
        edits.values[token] = value
        edits.outcomes[token] = None
        self._edit_keys[token] = key
        self._set_custom_value(event_id, field_id, value)
        return token

    def settle_custom_edit(self, token: int | None, ok: bool) -> None:
        """Record the server's verdict on an edit and fix up the shown value.

        A failed edit falls back to the newest confirmed value, or to the
        pre-edit server value; a newer edit still in flight keeps showing.
        """
        if self._closed or token is None:
            return
        key = self._edit_keys.pop(token, None)
        if key is None:
            return
        edits = self._edits[key]
        edits.outcomes[token] = ok
        display = edits.display_value()
        if edits.settled():
            del self._edits[key]
        event_id, field_id = key
        event = self._rundown.events.get(event_id) if self._rundown is not None else None
        if event is not None and event.custom.get(field_id) != display:
            self._set_custom_value(event_id, field_id, display)

    def pending_edits(self) -> int:
        return len(self._edit_keys)

    # ── Teardown ───────────────────────────────────────────────────

    def close(self) -> None:
        """Freeze the store: later merges and edits are no-ops."""
        self._closed = True
        self._snapshot_listeners.clear()
        self._rundown_listeners.clear()
        self._edits.clear()
        self._edit_keys.clear()
