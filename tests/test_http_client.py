"""Tests for the HTTP API client."""

from __future__ import annotations

import json

import httpx
import pytest

from ontime_sync.api.http_client import OntimeHttpClient
from ontime_sync.core.errors import RequestError, UnreachableServer
from ontime_sync.core.models import ServerConfig

NORMALIZED = {
    "rundown": {
        "421b5a": {"id": "421b5a", "title": "Intro", "custom": {"Image_Test": "a.png"}},
        "21313f": {"id": "21313f", "title": "Talk", "duration": 600},
    },
    "order": ["421b5a", "21313f"],
    "revision": 2,
}


class Recorder:
    """MockTransport handler that records requests and serves canned routes."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key in self.routes:
            return self.routes[key]
        return httpx.Response(404, json={"error": "not found"})

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) if r.content else None for r in self.requests]


def _client(recorder: Recorder) -> OntimeHttpClient:
    return OntimeHttpClient(
        ServerConfig(base_url="http://ontime.test"),
        transport=httpx.MockTransport(recorder),
    )


class TestReads:
    async def test_get_normalized_rundown(self) -> None:
        recorder = Recorder({("GET", "/data/rundown/normalised"): httpx.Response(200, json=NORMALIZED)})
        async with _client(recorder) as client:
            rundown = await client.get_normalized_rundown()
        assert rundown.order == ("421b5a", "21313f")
        assert rundown.events["21313f"].duration == 600
        assert [f.id for f in rundown.custom_fields] == ["Image_Test"]

    async def test_get_ordered_rundown(self) -> None:
        recorder = Recorder({("GET", "/data/rundown/normalised"): httpx.Response(200, json=NORMALIZED)})
        async with _client(recorder) as client:
            events = await client.get_ordered_rundown()
        assert [e.id for e in events] == ["421b5a", "21313f"]

    async def test_get_flat_rundown(self) -> None:
        recorder = Recorder({("GET", "/data/rundown"): httpx.Response(200, json=[{"id": "a"}, {"id": "b"}])})
        async with _client(recorder) as client:
            rundown = await client.get_rundown()
        assert rundown.order == ("a", "b")

    async def test_get_project_data(self) -> None:
        recorder = Recorder({
            ("GET", "/data/project"): httpx.Response(
                200, json={"title": "Gala", "customFields": [{"id": "Song", "label": "Song"}]}
            )
        })
        async with _client(recorder) as client:
            project = await client.get_project_data()
        assert project.title == "Gala"
        assert project.custom_fields[0].id == "Song"

    async def test_get_runtime_data_uses_configured_path(self) -> None:
        recorder = Recorder({("GET", "/api/runtime"): httpx.Response(200, json={"timer": {}})})
        client = OntimeHttpClient(
            ServerConfig(base_url="http://ontime.test", runtime_path="/api/runtime"),
            transport=httpx.MockTransport(recorder),
        )
        assert await client.get_runtime_data() == {"timer": {}}
        await client.aclose()

    async def test_unexpected_shape_raises(self) -> None:
        recorder = Recorder({("GET", "/data/project"): httpx.Response(200, json=[1, 2])})
        async with _client(recorder) as client:
            with pytest.raises(RequestError):
                await client.get_project_data()


class TestWrites:
    async def test_add_and_remove_time_bodies(self) -> None:
        recorder = Recorder({
            ("POST", "/playback/addtime"): httpx.Response(200, json={"ok": True}),
            ("POST", "/playback/removetime"): httpx.Response(200, json={"ok": True}),
        })
        async with _client(recorder) as client:
            await client.add_time(60)
            await client.remove_time(10)
        assert [r.url.path for r in recorder.requests] == ["/playback/addtime", "/playback/removetime"]
        assert recorder.bodies() == [{"seconds": 60}, {"seconds": 10}]

    async def test_playback_command_body(self) -> None:
        recorder = Recorder({("POST", "/playback/start"): httpx.Response(200, json={})})
        async with _client(recorder) as client:
            await client.send_playback_command("start", {"eventId": "21313f"})
        assert recorder.bodies() == [{"eventId": "21313f"}]
        assert recorder.requests[0].headers["content-type"] == "application/json"

    async def test_update_custom_field(self) -> None:
        recorder = Recorder({
            ("PATCH", "/events/421b5a/custom/Image_Test"): httpx.Response(200, json={"ok": True})
        })
        async with _client(recorder) as client:
            await client.update_custom_field("421b5a", "Image_Test", "https://example.com/a.png")
        assert recorder.bodies() == [{"value": "https://example.com/a.png"}]

    async def test_update_event_returns_server_copy(self) -> None:
        recorder = Recorder({
            ("PATCH", "/events/21313f"): httpx.Response(200, json={"id": "21313f", "title": "New"})
        })
        async with _client(recorder) as client:
            event = await client.update_event("21313f", {"title": "New"})
        assert event is not None
        assert event.title == "New"
        assert recorder.bodies() == [{"title": "New"}]

    async def test_update_event_without_body(self) -> None:
        recorder = Recorder({("PATCH", "/events/21313f"): httpx.Response(204)})
        async with _client(recorder) as client:
            assert await client.update_event("21313f", {"title": "New"}) is None


class TestErrors:
    async def test_http_error_status(self) -> None:
        recorder = Recorder({("POST", "/playback/start"): httpx.Response(500, text="server exploded")})
        async with _client(recorder) as client:
            with pytest.raises(RequestError) as info:
                await client.send_playback_command("start")
        assert info.value.status_code == 500
        assert info.value.method == "POST"
        assert info.value.path == "/playback/start"

    async def test_transport_failure(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = OntimeHttpClient(transport=httpx.MockTransport(refuse))
        with pytest.raises(RequestError) as info:
            await client.get_normalized_rundown()
        assert info.value.status_code is None
        await client.aclose()


class TestHealth:
    async def test_health_ok(self) -> None:
        recorder = Recorder({("GET", "/health"): httpx.Response(200, text="ok")})
        async with _client(recorder) as client:
            assert await client.health_check() is True
            await client.ping()

    async def test_health_failure(self) -> None:
        recorder = Recorder({("GET", "/health"): httpx.Response(503)})
        async with _client(recorder) as client:
            assert await client.health_check() is False
            with pytest.raises(UnreachableServer):
                await client.ping()
