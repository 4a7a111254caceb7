"""Typed event dataclasses for the sync engine's event bus."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from ontime_sync.core.models import Connectivity, Rundown, RuntimeSnapshot
from ontime_sync.core.normalizer import Envelope


@dataclass(frozen=True)
class EnvelopeReceived:
    """Emitted by the transport or the poller for every usable message."""

    envelope: Envelope
    source: str  # "stream" or "poll"
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SnapshotUpdated:
    """Emitted by the engine after a merge changed the live snapshot."""

    snapshot: RuntimeSnapshot


@dataclass(frozen=True)
class RundownUpdated:
    """Emitted by the engine when the rundown or a custom value changed."""

    rundown: Rundown


@dataclass(frozen=True)
class StreamStateChanged:
    """Emitted by the transport when the streaming channel opens or closes."""

    connected: bool
    error: str | None = None


@dataclass(frozen=True)
class HealthChecked:
    """Emitted by the poller after every health check."""

    reachable: bool
    error: str | None = None


@dataclass(frozen=True)
class ConnectivityChanged:
    """Emitted when either connectivity flag flips."""

    connectivity: Connectivity


@dataclass(frozen=True)
class ComponentStatus:
    """Component status for operators and logs."""

    component: str  # "transport", "poller", "commands", "engine"
    status: str  # "running", "error", "idle"
    message: str
    timestamp: float = field(default_factory=time.time)
