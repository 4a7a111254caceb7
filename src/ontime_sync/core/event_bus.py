"""Async event bus connecting the engine's components."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine, Type

logger = logging.getLogger(__name__)

Handler = Callable[..., Coroutine[Any, Any, None]]


class EventBus:
    """Async pub/sub bus.

    Transports and pollers publish what they receive; the engine and the
    web relay subscribe. Handlers for one event run concurrently and a
    failing handler never affects the publisher or the other handlers.
    Once closed, publishing is a no-op.
    """

    def __init__(self) -> None:
        self._handlers: dict[Type, list[Handler]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register a handler for an event type; returns an unsubscribe callable."""
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Type) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: Any) -> None:
        """Deliver *event* to every handler subscribed to its type."""
        if self._closed:
            return
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *(h(event) for h in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s raised %s for event %s: %s",
                    handler.__qualname__,
                    type(result).__name__,
                    event_type.__name__,
                    result,
                )

    def close(self) -> None:
        """Stop delivering events and drop all handlers."""
        self._closed = True
        self._handlers.clear()
