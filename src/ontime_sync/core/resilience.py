"""Resilience utilities: recurring timers and the reconnection policy.

Every periodic activity in the engine (probing, reconnecting, polling,
health checks) runs on a ``RecurringTimer`` so teardown can cancel all
of them the same way.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)


# ── Reconnection policy ───────────────────────────────────────────


@dataclass
class ReconnectConfig:
    """Reconnection policy for the streaming channel.

    ``policy`` is ``"fixed"`` (every ``interval_s``) or ``"exponential"``
    (``interval_s * factor**attempt`` capped at ``max_interval_s``).
    Attempts are unbounded with either policy.
    """

    policy: str = "fixed"
    interval_s: float = 5.0
    max_interval_s: float = 60.0
    factor: float = 2.0


def reconnect_delay(config: ReconnectConfig, attempt: int) -> float:
    """Seconds to wait before reconnection attempt number *attempt* (0-based)."""
    if config.policy == "fixed":
        return config.interval_s
    if config.policy != "exponential":
        raise ValueError(f"Unknown reconnect policy: {config.policy!r}")
    try:
        delay = config.interval_s * (config.factor ** attempt)
    except OverflowError:
        return config.max_interval_s
    return min(delay, config.max_interval_s)


# ── Recurring timer ───────────────────────────────────────────────


Interval = Union[float, Callable[[int], float]]


class RecurringTimer:
    """Runs an async callback repeatedly on the running event loop.

    The interval is either a constant or a function of the tick number,
    which is how the exponential reconnection policy plugs in. A timer
    may be stopped from inside its own callback; the callback then runs
    to completion and no further tick happens.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        interval: Interval,
    ) -> None:
        self.name = name
        self._callback = callback
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._ticks = 0

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        """Number of callbacks run since the timer was last started."""
        return self._ticks

    def start(self) -> bool:
        """Arm the timer. Returns False if it was already armed."""
        if self.armed:
            return False
        self._ticks = 0
        self._task = asyncio.create_task(self._run(), name=f"timer-{self.name}")
        return True

    def stop(self) -> None:
        """Disarm the timer. Safe to call when not armed."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def aclose(self) -> None:
        """Disarm the timer and wait until its task has finished."""
        task = self._task
        self.stop()
        if task is None or task is asyncio.current_task():
            return
        with suppress(asyncio.CancelledError):
            await task

    def _next_delay(self) -> float:
        if callable(self._interval):
            return self._interval(self._ticks)
        return self._interval

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self._next_delay())
            if self._task is not me:
                break
            try:
                await self._callback()
            except Exception:
                logger.exception("Timer %s callback failed", self.name)
            if self._task is me:
                self._ticks += 1
