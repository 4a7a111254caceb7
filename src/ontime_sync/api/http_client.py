"""Request/response client for the timer server's HTTP API."""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from ontime_sync.core.errors import RequestError, UnreachableServer
from ontime_sync.core.models import CustomField, Event, ProjectData, Rundown, ServerConfig

logger = logging.getLogger(__name__)

PROJECT_PATH = "/data/project"
RUNDOWN_PATH = "/data/rundown"
NORMALIZED_RUNDOWN_PATH = "/data/rundown/normalised"
HEALTH_PATH = "/health"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class OntimeHttpClient:
    """Thin async wrapper over ``httpx.AsyncClient``.

    Every failure, whether the request never got a response or the
    server answered with an error status, surfaces as ``RequestError``.
    Nothing is retried here.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ServerConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            timeout=self.config.request_timeout_s,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> OntimeHttpClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Core request ───────────────────────────────────────────────

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RequestError(method, path, str(exc) or type(exc).__name__) from exc

        if response.is_error:
            detail = response.text[:200] if response.content else response.reason_phrase
            logger.warning("%s %s -> HTTP %d", method, path, response.status_code)
            raise RequestError(
                method,
                path,
                f"HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        logger.debug("%s %s -> HTTP %d", method, path, response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _get_object(self, path: str) -> Mapping[str, Any]:
        data = await self._request("GET", path)
        if not isinstance(data, Mapping):
            raise RequestError("GET", path, "expected a JSON object", status_code=200)
        return data

    # ── Reads ──────────────────────────────────────────────────────

    async def get_project_data(self) -> ProjectData:
        return ProjectData.from_dict(await self._get_object(PROJECT_PATH))

    async def get_normalized_rundown(
        self, custom_fields: list[CustomField] | None = None
    ) -> Rundown:
        """Fetch ``/data/rundown/normalised`` as a ``Rundown``.

        *custom_fields* (usually from project data) are used when the
        response carries no field definitions of its own.
        """
        data = await self._get_object(NORMALIZED_RUNDOWN_PATH)
        rundown = Rundown.from_normalized(data, custom_fields)
        logger.debug(
            "Rundown: %d events, %d custom fields",
            len(rundown.order),
            len(rundown.custom_fields),
        )
        return rundown

    async def get_rundown(self, custom_fields: list[CustomField] | None = None) -> Rundown:
        """Fetch the flat ``/data/rundown`` list form."""
        data = await self._request("GET", RUNDOWN_PATH)
        if isinstance(data, Mapping) and isinstance(data.get("rundown"), list):
            data = data["rundown"]
        if not isinstance(data, list):
            raise RequestError("GET", RUNDOWN_PATH, "expected a JSON list", status_code=200)
        return Rundown.from_list(data, custom_fields)

    async def get_ordered_rundown(self) -> list[Event]:
        return (await self.get_normalized_rundown()).ordered_events()

    async def get_runtime_data(self) -> Mapping[str, Any]:
        """Fetch a runtime snapshot from the configured path (fallback only)."""
        return await self._get_object(self.config.runtime_path)

    # ── Writes ─────────────────────────────────────────────────────

    async def update_event(self, event_id: str, updates: Mapping[str, Any]) -> Event | None:
        """PATCH an event; returns the server's copy when it sends one back."""
        data = await self._request("PATCH", f"/events/{_segment(event_id)}", json=dict(updates))
        if isinstance(data, Mapping) and isinstance(data.get("payload"), Mapping):
            data = data["payload"]
        if isinstance(data, Mapping) and data.get("id"):
            return Event.from_dict(data)
        return None

    async def update_custom_field(self, event_id: str, field_id: str, value: str) -> Any:
        path = f"/events/{_segment(event_id)}/custom/{_segment(field_id)}"
        return await self._request("PATCH", path, json={"value": value})

    async def send_playback_command(
        self, command: str, payload: Mapping[str, Any] | None = None
    ) -> Any:
        logger.info("Playback command: %s %s", command, dict(payload or {}))
        return await self._request(
            "POST", f"/playback/{_segment(command)}", json=dict(payload or {})
        )

    async def add_time(self, seconds: float) -> Any:
        return await self._request("POST", "/playback/addtime", json={"seconds": seconds})

    async def remove_time(self, seconds: float) -> Any:
        return await self._request("POST", "/playback/removetime", json={"seconds": seconds})

    # ── Health ─────────────────────────────────────────────────────

    async def ping(self) -> None:
        """Raise ``UnreachableServer`` unless ``/health`` answers 2xx."""
        try:
            await self._request("GET", HEALTH_PATH)
        except RequestError as exc:
            raise UnreachableServer(str(exc)) from exc

    async def health_check(self) -> bool:
        try:
            await self.ping()
        except UnreachableServer:
            return False
        return True
