"""Logging setup: structlog rendering on top of stdlib loggers.

Modules keep using ``logging.getLogger(__name__)``. Each record is tagged
with a ``component`` key taken from its logger name (``transport``,
``poller``, ``commands``...), matching the names carried by
``ComponentStatus`` events, so log lines and status events can be joined.

The streaming channel probes the server every 100 ms and logs each frame
at DEBUG. That traffic has its own level (``frame_level``) so ``--log-level
DEBUG`` stays readable; pass ``frame_level="DEBUG"`` to see every frame.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

import structlog

# Loggers that emit one record per frame or probe
FRAME_LOGGERS = ("ontime_sync.transport", "ontime_sync.core.normalizer")

# Third-party request and socket chatter
NOISY_LOGGERS = ("httpx", "httpcore", "websockets", "uvicorn.access")

_COMPONENT_PREFIXES = (
    ("transport", "transport"),
    ("api.poller", "poller"),
    ("api.commands", "commands"),
    ("api.http_client", "http"),
    ("core.normalizer", "normalizer"),
    ("core.store", "store"),
    ("engine", "engine"),
    ("web", "web"),
)


def component_for(logger_name: str) -> str | None:
    """Map ``ontime_sync.api.poller`` to ``poller``; None for foreign loggers."""
    if not logger_name.startswith("ontime_sync."):
        return None
    rest = logger_name[len("ontime_sync."):]
    for prefix, component in _COMPONENT_PREFIXES:
        if rest == prefix or rest.startswith(prefix + "."):
            return component
    return None


def add_component(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor adding ``component`` unless already bound."""
    if "component" not in event_dict:
        component = component_for(event_dict.get("logger", ""))
        if component is not None:
            event_dict["component"] = component
    return event_dict


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    frame_level: str | None = None,
) -> None:
    """Route all logging through structlog on stderr.

    Args:
        level: Root log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Emit JSON lines instead of console output.
        frame_level: Level for per-frame streaming traffic. Defaults to
            the root level, but never below INFO.
    """
    log_level = _level(level, logging.INFO)
    frames = _level(frame_level, max(log_level, logging.INFO))

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_component,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_output),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in FRAME_LOGGERS:
        logging.getLogger(name).setLevel(frames)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
