"""Event status derivation and timer display helpers.

Everything here is a pure function of its inputs and is recomputed in
full on every snapshot or rundown change.
"""

from __future__ import annotations

from typing import Sequence

from ontime_sync.core.models import (
    Event,
    EventStatus,
    EventWithStatus,
    PlaybackStateName,
    RuntimeSnapshot,
)

# Used when an event does not define its own thresholds.
DEFAULT_WARNING_S = 300.0
DEFAULT_DANGER_S = 60.0


def derive_statuses(
    events: Sequence[Event],
    snapshot: RuntimeSnapshot | None,
) -> list[EventWithStatus]:
    """Compute each event's display status from rundown order and snapshot.

    Precedence: ``skip`` always wins; the selected event is active; events
    before it are completed; everything else is upcoming. With no
    snapshot (or no selection) every non-skipped event is upcoming.
    ``time_remaining`` is not clamped at zero.
    """
    selected_id = snapshot.selected_event_id if snapshot is not None else None
    active_index = -1
    if selected_id is not None:
        for index, event in enumerate(events):
            if event.id == selected_id:
                active_index = index
                break

    running = (
        snapshot is not None
        and snapshot.playback is not None
        and snapshot.playback.state == PlaybackStateName.START
    )
    current = snapshot.timer.current if snapshot is not None and snapshot.timer is not None else None

    result: list[EventWithStatus] = []
    for index, event in enumerate(events):
        if event.skip:
            result.append(EventWithStatus(event, EventStatus.SKIPPED))
        elif index == active_index:
            remaining = None
            if event.duration and current is not None:
                remaining = event.duration * 1000 - current
            result.append(
                EventWithStatus(
                    event,
                    EventStatus.ACTIVE,
                    is_running=running,
                    time_remaining=remaining,
                )
            )
        elif index < active_index:
            result.append(EventWithStatus(event, EventStatus.COMPLETED))
        else:
            result.append(EventWithStatus(event, EventStatus.UPCOMING))
    return result


def timer_phase(remaining_ms: float | None, event: Event | None = None) -> str:
    """Classify remaining time as ``"normal"``, ``"warning"`` or ``"danger"``."""
    if remaining_ms is None:
        return "normal"
    warning_s = event.time_warning if event is not None and event.time_warning else DEFAULT_WARNING_S
    danger_s = event.time_danger if event is not None and event.time_danger else DEFAULT_DANGER_S
    if remaining_ms <= danger_s * 1000:
        return "danger"
    if remaining_ms <= warning_s * 1000:
        return "warning"
    return "normal"


def format_time(ms: float) -> str:
    """Format milliseconds as ``[-]MM:SS`` or ``[-]HH:MM:SS``."""
    total_seconds = int(abs(ms) // 1000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    sign = "-" if ms < 0 else ""
    if hours > 0:
        return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{sign}{minutes:02d}:{seconds:02d}"


def format_duration(seconds: float) -> str:
    """Format seconds as ``[-]MM:SS`` (minutes are not folded into hours)."""
    minutes, secs = divmod(int(abs(seconds)), 60)
    sign = "-" if seconds < 0 else ""
    return f"{sign}{minutes:02d}:{secs:02d}"
