"""Error taxonomy for the sync engine."""

from __future__ import annotations


class OntimeSyncError(Exception):
    """Base class for all engine errors."""


class MalformedFrame(OntimeSyncError):
    """A streaming frame could not be decoded. Dropped at the normalizer."""


class TransportError(OntimeSyncError):
    """The streaming channel failed to open or dropped."""


class RequestError(OntimeSyncError):
    """A request/response call failed.

    ``status_code`` is None when no HTTP response was received at all
    (timeout, refused connection, DNS failure).
    """

    def __init__(
        self,
        method: str,
        path: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"{method} {path} failed: {message}")
        self.method = method
        self.path = path
        self.status_code = status_code


class UnreachableServer(OntimeSyncError):
    """The server's health check failed."""
