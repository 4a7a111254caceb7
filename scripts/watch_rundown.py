#!/usr/bin/env python3
"""Print live event statuses from an Ontime server to the terminal.

Useful for checking connectivity and status derivation without the
web relay:

    python scripts/watch_rundown.py --url http://localhost:4001
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from ontime_sync.core.models import EventStatus, EventWithStatus, ServerConfig
from ontime_sync.core.status import format_duration, format_time, timer_phase
from ontime_sync.engine import EngineConfig, SyncEngine
from ontime_sync.logging_config import setup_logging

_MARKERS = {
    EventStatus.ACTIVE: ">",
    EventStatus.COMPLETED: "x",
    EventStatus.SKIPPED: "-",
    EventStatus.UPCOMING: " ",
}


def render(statuses: list[EventWithStatus]) -> str:
    """Render one line per event."""
    lines = []
    for item in statuses:
        event = item.event
        duration = format_duration(event.duration) if event.duration else "--:--"
        line = f"[{_MARKERS[item.status]}] {event.cue:<8} {event.title:<32} {duration}"
        if item.time_remaining is not None:
            phase = timer_phase(item.time_remaining, event)
            state = "running" if item.is_running else "paused"
            line += f"  {format_time(item.time_remaining)} ({state}, {phase})"
        lines.append(line)
    return "\n".join(lines)


async def watch(url: str) -> None:
    engine = SyncEngine(EngineConfig(server=ServerConfig(base_url=url)))
    stop = asyncio.Event()
    last = ""

    def _print(statuses: list[EventWithStatus]) -> None:
        nonlocal last
        text = render(statuses)
        if text != last:
            last = text
            print("\033[2J\033[H" + text, flush=True)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with engine:
        engine.subscribe_statuses(_print)
        await stop.wait()


def main() -> None:
    parser = argparse.ArgumentParser(description="Watch an Ontime rundown live")
    parser.add_argument("--url", default="http://localhost:4001", help="Ontime server base URL")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    args = parser.parse_args()

    setup_logging(level=args.log_level)
    asyncio.run(watch(args.url))


if __name__ == "__main__":
    main()
