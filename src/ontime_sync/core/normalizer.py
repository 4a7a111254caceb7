"""Message normalizer: raw wire frames -> canonical envelopes.

The server has changed its envelope shape over time without a version
marker, so frames arrive as ``{topic, payload}``, ``{type, data}`` or as
bare runtime objects. Everything object-shaped is forwarded; precision
is traded for not losing data.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ontime_sync.core.errors import MalformedFrame

logger = logging.getLogger(__name__)

UNKNOWN_DATA_TOPIC = "unknown-data"
UNKNOWN_TOPIC = "unknown"
ERROR_TOPIC = "error"

STATE_TOPICS = frozenset({
    "ontime-clock",
    "clock",
    "runtime",
    "timer",
    "playback",
    "poll",
    "get-runtime",
    "get-timer",
    "get-playback",
    "ontime",
    "ontime-poll",
})


class EnvelopeKind(Enum):
    STATE = "state"  # Recognized state-carrying topic
    UNKNOWN_DATA = "unknown-data"  # No topic/type wrapper at all
    ERROR = "error"  # Server-side error topic
    UNRECOGNIZED = "unrecognized"  # Unseen topic with an object payload


@dataclass(frozen=True)
class Envelope:
    """Canonical ``{topic, payload}`` wrapper around one inbound message."""

    topic: str
    payload: Any
    kind: EnvelopeKind

    @property
    def is_object(self) -> bool:
        return isinstance(self.payload, dict)


def decode_frame(raw: Any) -> Any:
    """Decode a raw frame into a Python value.

    Text and bytes are parsed as JSON; anything else is assumed to be
    already decoded.

    Raises:
        MalformedFrame: if the frame is empty or not valid UTF-8/JSON.
    """
    if isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrame(f"frame is not UTF-8: {exc}") from exc
    if isinstance(raw, str):
        if not raw.strip():
            raise MalformedFrame("empty frame")
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedFrame(f"frame is not JSON: {exc}") from exc
        except (ValueError, RecursionError) as exc:
            # Nesting too deep or an integer past the digit limit
            raise MalformedFrame(f"frame cannot be decoded: {exc}") from exc
    if raw is None:
        raise MalformedFrame("empty frame")
    return raw


def _canonical_topic(raw_topic: Any) -> str:
    if not isinstance(raw_topic, str):
        logger.debug("Non-text topic %r recorded as %r", raw_topic, UNKNOWN_TOPIC)
        return UNKNOWN_TOPIC
    return raw_topic.strip().lower()


def _classify(topic: str) -> EnvelopeKind:
    if topic in STATE_TOPICS:
        return EnvelopeKind.STATE
    if topic == UNKNOWN_DATA_TOPIC:
        return EnvelopeKind.UNKNOWN_DATA
    if topic == ERROR_TOPIC:
        return EnvelopeKind.ERROR
    return EnvelopeKind.UNRECOGNIZED


def envelope_from_value(value: Any) -> Envelope | None:
    """Wrap an already-decoded value, or return None if it must be dropped."""
    if not isinstance(value, dict):
        logger.debug("Dropping non-object frame of type %s", type(value).__name__)
        return None

    if "topic" in value:
        topic = _canonical_topic(value["topic"])
        payload = value.get("payload")
    elif "type" in value:
        topic = _canonical_topic(value["type"])
        if value.get("data") is not None:
            payload = value["data"]
        elif value.get("payload") is not None:
            payload = value["payload"]
        else:
            payload = value
    else:
        topic = UNKNOWN_DATA_TOPIC
        payload = value

    kind = _classify(topic)
    if not isinstance(payload, dict) and kind not in (EnvelopeKind.STATE, EnvelopeKind.ERROR):
        logger.debug("Dropping %r frame with non-object payload", topic)
        return None
    if payload is None:
        return None
    return Envelope(topic=topic, payload=payload, kind=kind)


def normalize_frame(raw: Any) -> Envelope | None:
    """Normalize one raw frame. Never raises; undecodable frames yield None."""
    try:
        value = decode_frame(raw)
    except MalformedFrame as exc:
        logger.warning("Malformed frame dropped: %s", exc)
        return None
    return envelope_from_value(value)
