"""Domain models and configuration dataclasses."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from ontime_sync.core.resilience import ReconnectConfig

logger = logging.getLogger(__name__)


# ── Enumerations ──────────────────────────────────────────────────


class TimerType(str, Enum):
    COUNT_DOWN = "count-down"
    COUNT_UP = "count-up"
    CLOCK = "clock"
    NONE = "none"


class EndAction(str, Enum):
    NONE = "none"
    LOAD_NEXT = "load-next"
    PLAY_NEXT = "play-next"
    STOP = "stop"


class PlaybackStateName(str, Enum):
    START = "start"
    PAUSE = "pause"
    STOP = "stop"
    ROLL = "roll"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OPTION = "option"


class EventStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"


def _enum_value(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    """Parse an enum member, falling back to *default* for unseen values."""
    try:
        return enum_cls(raw)
    except ValueError:
        if raw is not None:
            logger.debug("Unknown %s value %r, using %s", enum_cls.__name__, raw, default.value)
        return default


def _opt_number(raw: Any) -> float | None:
    """Return a float for numeric wire values, None for anything else."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    return raw


def _wire_bool(raw: Any) -> bool:
    """Only a JSON true or the text "true" counts as set."""
    return raw is True or raw == "true"


def _opt_str(raw: Any) -> str | None:
    return raw if isinstance(raw, str) else None


def _opt_int(raw: Any) -> int | None:
    if isinstance(raw, bool) or not isinstance(raw, int):
        return None
    return raw


# ── Rundown ───────────────────────────────────────────────────────


# Wire (camelCase) name for every Event attribute that can be edited.
EVENT_WIRE_FIELDS: dict[str, str] = {
    "title": "title",
    "note": "note",
    "cue": "cue",
    "colour": "colour",
    "is_public": "isPublic",
    "skip": "skip",
    "timer_type": "timerType",
    "duration": "duration",
    "time_start": "timeStart",
    "time_end": "timeEnd",
    "time_warning": "timeWarning",
    "time_danger": "timeDanger",
    "end_action": "endAction",
}

MAX_CUE_LENGTH = 8


@dataclass(frozen=True)
class Event:
    """A scheduled rundown entry as defined on the server.

    Timing values are in seconds. ``custom`` maps custom field ids to
    their string values.
    """

    id: str
    title: str = ""
    note: str = ""
    cue: str = ""
    colour: str = ""
    is_public: bool = False
    skip: bool = False
    timer_type: TimerType = TimerType.COUNT_DOWN
    duration: float | None = None
    time_start: float | None = None
    time_end: float | None = None
    time_warning: float | None = None
    time_danger: float | None = None
    end_action: EndAction = EndAction.NONE
    custom: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        custom_raw = data.get("custom")
        custom: dict[str, str] = {}
        if isinstance(custom_raw, Mapping):
            custom = {
                str(k): "" if v is None else str(v) for k, v in custom_raw.items()
            }
        return cls(
            id=str(data.get("id", "")),
            title=_opt_str(data.get("title")) or "",
            note=_opt_str(data.get("note")) or "",
            cue=_opt_str(data.get("cue")) or "",
            colour=_opt_str(data.get("colour")) or "",
            is_public=_wire_bool(data.get("isPublic")),
            skip=_wire_bool(data.get("skip")),
            timer_type=_enum_value(TimerType, data.get("timerType"), TimerType.COUNT_DOWN),
            duration=_opt_number(data.get("duration")),
            time_start=_opt_number(data.get("timeStart")),
            time_end=_opt_number(data.get("timeEnd")),
            time_warning=_opt_number(data.get("timeWarning")),
            time_danger=_opt_number(data.get("timeDanger")),
            end_action=_enum_value(EndAction, data.get("endAction"), EndAction.NONE),
            custom=custom,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "note": self.note,
            "cue": self.cue,
            "colour": self.colour,
            "isPublic": self.is_public,
            "skip": self.skip,
            "timerType": self.timer_type.value,
            "duration": self.duration,
            "timeStart": self.time_start,
            "timeEnd": self.time_end,
            "timeWarning": self.time_warning,
            "timeDanger": self.time_danger,
            "endAction": self.end_action.value,
            "custom": dict(self.custom),
        }


@dataclass(frozen=True)
class CustomField:
    """Definition of a user-defined per-event field."""

    id: str
    label: str
    type: FieldType = FieldType.TEXT
    options: tuple[str, ...] | None = None
    colour: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], field_id: str | None = None) -> CustomField:
        fid = str(field_id if field_id is not None else data.get("id", ""))
        options = data.get("options")
        return cls(
            id=fid,
            label=_opt_str(data.get("label")) or field_label(fid),
            type=_enum_value(FieldType, data.get("type"), FieldType.TEXT),
            options=tuple(str(o) for o in options) if isinstance(options, list) else None,
            colour=_opt_str(data.get("colour")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type.value,
            "options": list(self.options) if self.options is not None else None,
            "colour": self.colour,
        }


_SEPARATORS = re.compile(r"[_\-]+")


def field_label(field_id: str) -> str:
    """Derive a display label from a field id: ``Image_Test`` -> ``Image Test``."""
    return _SEPARATORS.sub(" ", field_id).strip()


def infer_field_type(value: str) -> FieldType:
    """Guess a custom field's type from one observed value."""
    if value in ("true", "false"):
        return FieldType.BOOLEAN
    text = value.strip()
    # float() also takes digit separators and "inf"; Ontime treats both as text
    if text and "_" not in text:
        try:
            float(text)
        except ValueError:
            return FieldType.TEXT
        word = text.lstrip("+-")
        if word[:3].lower() in ("inf", "nan"):
            return FieldType.NUMBER if word == "Infinity" else FieldType.TEXT
        return FieldType.NUMBER
    return FieldType.TEXT


def parse_custom_fields(raw: Any) -> list[CustomField] | None:
    """Parse server field definitions in list or ``{id: {...}}`` form.

    Returns None when *raw* carries no usable definitions, so the
    caller can fall back to inference.
    """
    fields: list[CustomField] = []
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, Mapping) and item.get("id"):
                fields.append(CustomField.from_dict(item))
    elif isinstance(raw, Mapping):
        for fid, item in raw.items():
            if isinstance(item, Mapping):
                fields.append(CustomField.from_dict(item, field_id=str(fid)))
    return fields or None


def infer_custom_fields(events: list[Event]) -> list[CustomField]:
    """Infer field definitions from the values seen across *events*.

    The first value observed for a field (in rundown order) decides its
    type.
    """
    seen: dict[str, CustomField] = {}
    for event in events:
        for fid, value in event.custom.items():
            if fid in seen:
                continue
            seen[fid] = CustomField(
                id=fid,
                label=field_label(fid),
                type=infer_field_type(value),
            )
    return list(seen.values())


@dataclass(frozen=True)
class Rundown:
    """Ordered rundown: event map plus explicit presentation order.

    Every id in ``order`` has an entry in ``events`` and appears once.
    """

    events: dict[str, Event] = field(default_factory=dict)
    order: tuple[str, ...] = ()
    custom_fields: tuple[CustomField, ...] = ()
    revision: int = 0
    total_duration: float | None = None
    total_delay: float | None = None

    @classmethod
    def build(
        cls,
        events: Mapping[str, Event],
        order: list[str] | tuple[str, ...],
        custom_fields: list[CustomField] | None = None,
        **extra: Any,
    ) -> Rundown:
        """Assemble a rundown, enforcing the order/event invariant."""
        clean: list[str] = []
        seen: set[str] = set()
        for eid in order:
            if eid in seen:
                logger.warning("Duplicate event id %s in rundown order dropped", eid)
                continue
            if eid not in events:
                logger.warning("Rundown order references unknown event %s", eid)
                continue
            seen.add(eid)
            clean.append(eid)
        kept = {eid: events[eid] for eid in clean}
        ordered = [kept[eid] for eid in clean]
        fields = custom_fields if custom_fields is not None else infer_custom_fields(ordered)
        return cls(
            events=kept,
            order=tuple(clean),
            custom_fields=tuple(fields),
            **extra,
        )

    @classmethod
    def from_normalized(
        cls,
        data: Mapping[str, Any],
        custom_fields: list[CustomField] | None = None,
    ) -> Rundown:
        """Parse the ``/data/rundown/normalised`` response.

        Field definitions in the response win over *custom_fields*
        (typically from project data); with neither, they are inferred.
        """
        raw_events = data.get("rundown")
        events: dict[str, Event] = {}
        if isinstance(raw_events, Mapping):
            for key, raw in raw_events.items():
                if isinstance(raw, Mapping):
                    event = Event.from_dict({"id": key, **raw})
                    events[event.id] = event
        raw_order = data.get("order")
        order = [str(eid) for eid in raw_order] if isinstance(raw_order, list) else list(events)
        fields = parse_custom_fields(data.get("customFields")) or custom_fields
        return cls.build(
            events,
            order,
            fields,
            revision=_opt_int(data.get("revision")) or 0,
            total_duration=_opt_number(data.get("totalDuration")),
            total_delay=_opt_number(data.get("totalDelay")),
        )

    @classmethod
    def from_list(cls, items: list[Any], custom_fields: list[CustomField] | None = None) -> Rundown:
        """Parse the flat ``/data/rundown`` list form."""
        events: dict[str, Event] = {}
        order: list[str] = []
        for raw in items:
            if isinstance(raw, Mapping) and raw.get("id"):
                event = Event.from_dict(raw)
                events.setdefault(event.id, event)
                order.append(event.id)
        return cls.build(events, order, custom_fields)

    def ordered_events(self) -> list[Event]:
        return [self.events[eid] for eid in self.order]

    def index_of(self, event_id: str | None) -> int:
        """Position of *event_id* in the rundown, -1 if absent."""
        if event_id is None:
            return -1
        try:
            return self.order.index(event_id)
        except ValueError:
            return -1


@dataclass(frozen=True)
class ProjectData:
    """Project metadata from ``/data/project``."""

    title: str = ""
    description: str = ""
    public_url: str = ""
    public_info: str = ""
    backstage_url: str = ""
    backstage_info: str = ""
    custom_fields: tuple[CustomField, ...] | None = None
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProjectData:
        # Some server versions nest metadata under "project".
        meta = data.get("project") if isinstance(data.get("project"), Mapping) else data
        fields = parse_custom_fields(data.get("customFields"))
        settings = data.get("settings")
        return cls(
            title=_opt_str(meta.get("title")) or "",
            description=_opt_str(meta.get("description")) or "",
            public_url=_opt_str(meta.get("publicUrl")) or "",
            public_info=_opt_str(meta.get("publicInfo")) or "",
            backstage_url=_opt_str(meta.get("backstageUrl")) or "",
            backstage_info=_opt_str(meta.get("backstageInfo")) or "",
            custom_fields=tuple(fields) if fields else None,
            settings=dict(settings) if isinstance(settings, Mapping) else {},
        )


# ── Runtime snapshot slices ───────────────────────────────────────


@dataclass(frozen=True)
class PlaybackState:
    state: PlaybackStateName = PlaybackStateName.STOP
    selected_event_id: str | None = None
    selected_event_index: int | None = None
    loaded_event_id: str | None = None
    loaded_event_index: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlaybackState:
        return cls(
            state=_enum_value(PlaybackStateName, data.get("state"), PlaybackStateName.STOP),
            selected_event_id=_opt_str(data.get("selectedEventId")),
            selected_event_index=_opt_int(data.get("selectedEventIndex")),
            loaded_event_id=_opt_str(data.get("loadedEventId")),
            loaded_event_index=_opt_int(data.get("loadedEventIndex")),
        )


@dataclass(frozen=True)
class SecondaryTimer:
    current: float | None = None
    duration: float | None = None


@dataclass(frozen=True)
class TimerState:
    """Timer values in milliseconds; ``expected_finish`` is a timestamp."""

    current: float | None = None
    duration: float | None = None
    expected_finish: float | None = None
    started_at: float | None = None
    added_time: float | None = None
    secondary_timer: SecondaryTimer | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TimerState:
        secondary_raw = data.get("secondaryTimer")
        secondary = None
        if isinstance(secondary_raw, Mapping):
            secondary = SecondaryTimer(
                current=_opt_number(secondary_raw.get("current")),
                duration=_opt_number(secondary_raw.get("duration")),
            )
        return cls(
            current=_opt_number(data.get("current")),
            duration=_opt_number(data.get("duration")),
            expected_finish=_opt_number(data.get("expectedFinish")),
            started_at=_opt_number(data.get("startedAt")),
            added_time=_opt_number(data.get("addedTime")),
            secondary_timer=secondary,
        )


@dataclass(frozen=True)
class RuntimeInfo:
    selected_event_id: str | None = None
    num_events: int | None = None
    current_time: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RuntimeInfo:
        return cls(
            selected_event_id=_opt_str(data.get("selectedEventId")),
            num_events=_opt_int(data.get("numEvents")),
            current_time=_opt_number(data.get("currentTime")),
        )


@dataclass(frozen=True)
class RuntimeSnapshot:
    """The single live view of remote playback, timer and pointer state.

    Each attribute except ``source`` and ``updated_at`` is an independent
    slice. Instances are immutable; every merge produces a new one.
    """

    timer: TimerState | None = None
    playback: PlaybackState | None = None
    runtime: RuntimeInfo | None = None
    message: dict[str, Any] | None = None
    event_now: Event | None = None
    event_next: Event | None = None
    public_event_now: Event | None = None
    public_event_next: Event | None = None
    source: str = ""
    updated_at: float = 0.0

    @property
    def selected_event_id(self) -> str | None:
        if self.playback is not None and self.playback.selected_event_id is not None:
            return self.playback.selected_event_id
        if self.runtime is not None:
            return self.runtime.selected_event_id
        return None


@dataclass(frozen=True)
class EventWithStatus:
    """Read-only projection of an Event with its derived display status."""

    event: Event
    status: EventStatus
    is_running: bool = False
    time_remaining: float | None = None

    @property
    def id(self) -> str:
        return self.event.id

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.event.to_dict(),
            "status": self.status.value,
            "isRunning": self.is_running,
            "timeRemaining": self.time_remaining,
        }


@dataclass(frozen=True)
class Connectivity:
    streaming_connected: bool = False
    http_reachable: bool = False


# ── Component configuration ───────────────────────────────────────


@dataclass
class ServerConfig:
    """Where the timer server lives."""

    base_url: str = "http://localhost:4001"
    ws_url: str = ""  # Derived from base_url when empty
    request_timeout_s: float = 10.0
    runtime_path: str = "/data/runtime"  # Only used when runtime polling is enabled

    @property
    def resolved_ws_url(self) -> str:
        if self.ws_url:
            return self.ws_url
        return self.base_url.rstrip("/").replace("http", "ws", 1) + "/ws"


@dataclass
class TransportConfig:
    """Configuration for the streaming connection."""

    probe_interval_s: float = 0.1
    connect_probe_topics: tuple[str, ...] = (
        "get-runtime",
        "get-timer",
        "get-playback",
        "poll-runtime",
        "ontime-poll",
    )
    recurring_probe_topics: tuple[str, ...] = ("get-runtime", "ontime-poll")
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)


@dataclass
class PollerConfig:
    """Configuration for the HTTP fallback poller."""

    runtime_poll_enabled: bool = False  # Ontime exposes runtime over the socket only
    runtime_poll_interval_s: float = 1.0
    runtime_poll_only_when_disconnected: bool = True
    rundown_refresh_interval_s: float = 120.0  # 0 disables
    health_interval_s: float = 30.0
