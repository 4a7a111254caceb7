"""Tests for the command dispatcher."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from ontime_sync.api.commands import CommandDispatcher, PlaybackCommand
from ontime_sync.core.errors import RequestError
from ontime_sync.core.models import Event, Rundown, TimerType
from ontime_sync.core.normalizer import Envelope, EnvelopeKind
from ontime_sync.core.store import RuntimeStateStore


def _store() -> RuntimeStateStore:
    store = RuntimeStateStore()
    store.set_rundown(Rundown.build(
        {
            "421b5a": Event(id="421b5a", custom={"Image_Test": "old.png"}),
            "21313f": Event(id="21313f", title="Talk"),
        },
        ["421b5a", "21313f"],
    ))
    return store


@pytest.fixture
def http() -> MagicMock:
    client = MagicMock()
    client.send_playback_command = AsyncMock(return_value={"ok": True})
    client.add_time = AsyncMock(return_value={"ok": True})
    client.remove_time = AsyncMock(return_value={"ok": True})
    client.update_event = AsyncMock(return_value=None)
    client.update_custom_field = AsyncMock(return_value={"ok": True})
    return client


@pytest.fixture
def store() -> RuntimeStateStore:
    return _store()


@pytest.fixture
def dispatcher(http: MagicMock, store: RuntimeStateStore) -> CommandDispatcher:
    return CommandDispatcher(http, store)


class TestPlayback:
    @pytest.mark.parametrize(
        "method, command",
        [
            ("start", "start"),
            ("pause", "pause"),
            ("stop", "stop"),
            ("reload", "reload"),
            ("roll", "roll"),
            ("start_next", "start-next"),
            ("start_previous", "start-previous"),
            ("load_next", "load-next"),
            ("load_previous", "load-previous"),
        ],
    )
    async def test_simple_commands(self, dispatcher, http, method: str, command: str) -> None:
        await getattr(dispatcher, method)()
        http.send_playback_command.assert_awaited_once_with(command, None)

    async def test_start_by_id(self, dispatcher, http) -> None:
        await dispatcher.start_by_id("21313f")
        http.send_playback_command.assert_awaited_once_with("start", {"eventId": "21313f"})

    async def test_start_by_index(self, dispatcher, http) -> None:
        await dispatcher.start_by_index(2)
        http.send_playback_command.assert_awaited_once_with("start", {"eventIndex": 2})

    async def test_start_by_cue(self, dispatcher, http) -> None:
        await dispatcher.start_by_cue("A1")
        http.send_playback_command.assert_awaited_once_with("start", {"eventCue": "A1"})

    @pytest.mark.parametrize("index", [-1, 1.5, True, "2"])
    async def test_start_by_index_validates(self, dispatcher, http, index) -> None:
        with pytest.raises(ValueError):
            await dispatcher.start_by_index(index)
        http.send_playback_command.assert_not_awaited()

    async def test_unknown_command_name(self, dispatcher) -> None:
        with pytest.raises(ValueError):
            await dispatcher.playback("explode")

    async def test_playback_by_enum(self, dispatcher, http) -> None:
        await dispatcher.playback(PlaybackCommand.START_NEXT)
        http.send_playback_command.assert_awaited_once_with("start-next", None)

    async def test_playback_never_touches_snapshot(self, dispatcher, store) -> None:
        store.merge(Envelope("timer", {"timer": {"current": 5}}, EnvelopeKind.STATE))
        before = store.snapshot
        await dispatcher.start()
        await dispatcher.pause()
        assert store.snapshot is before

    async def test_failure_propagates_without_retry(self, dispatcher, http) -> None:
        http.send_playback_command.side_effect = RequestError("POST", "/playback/start", "boom", 500)
        with pytest.raises(RequestError):
            await dispatcher.start()
        assert http.send_playback_command.await_count == 1


class TestTime:
    async def test_add_then_remove_are_independent_calls(self, dispatcher, http, store) -> None:
        store.merge(Envelope("timer", {"timer": {"current": 5}}, EnvelopeKind.STATE))
        before = store.snapshot

        await dispatcher.add_time(60)
        await dispatcher.remove_time(10)

        http.add_time.assert_awaited_once_with(60)
        http.remove_time.assert_awaited_once_with(10)
        assert store.snapshot is before

    @pytest.mark.parametrize("seconds", [-1, math.inf, math.nan, "60", None, True])
    async def test_rejects_invalid_seconds(self, dispatcher, http, seconds) -> None:
        with pytest.raises(ValueError):
            await dispatcher.add_time(seconds)
        with pytest.raises(ValueError):
            await dispatcher.remove_time(seconds)
        http.add_time.assert_not_awaited()
        http.remove_time.assert_not_awaited()


class TestUpdateEvent:
    async def test_python_and_wire_names(self, dispatcher, http) -> None:
        await dispatcher.update_event("21313f", time_warning=120, timeDanger=30, timer_type=TimerType.COUNT_UP)
        http.update_event.assert_awaited_once_with(
            "21313f", {"timeWarning": 120, "timeDanger": 30, "timerType": "count-up"}
        )

    async def test_unknown_field(self, dispatcher, http) -> None:
        with pytest.raises(ValueError, match="unknown event field"):
            await dispatcher.update_event("21313f", colour_scheme="red")
        http.update_event.assert_not_awaited()

    async def test_fields_as_mapping(self, dispatcher, http) -> None:
        await dispatcher.apply_event_updates("21313f", {"title": "Keynote", "isPublic": True})
        http.update_event.assert_awaited_once_with("21313f", {"title": "Keynote", "isPublic": True})

    async def test_mapping_with_event_id_key_is_unknown_field(self, dispatcher, http) -> None:
        with pytest.raises(ValueError, match="unknown event field"):
            await dispatcher.apply_event_updates("21313f", {"event_id": "other"})
        http.update_event.assert_not_awaited()

    async def test_no_fields(self, dispatcher) -> None:
        with pytest.raises(ValueError):
            await dispatcher.update_event("21313f")

    @pytest.mark.parametrize("cue", ["123456789", 12])
    async def test_cue_validation(self, dispatcher, http, cue) -> None:
        with pytest.raises(ValueError, match="cue"):
            await dispatcher.update_event("21313f", cue=cue)
        http.update_event.assert_not_awaited()

    async def test_cue_of_eight_chars_allowed(self, dispatcher, http) -> None:
        await dispatcher.update_event("21313f", cue="12345678")
        http.update_event.assert_awaited_once()

    async def test_returned_event_merged_into_store(self, dispatcher, http, store) -> None:
        http.update_event.return_value = Event(id="21313f", title="Keynote")
        event = await dispatcher.update_event("21313f", title="Keynote")
        assert event.title == "Keynote"
        assert store.rundown.events["21313f"].title == "Keynote"

    async def test_no_returned_event_invalidates(self, http, store) -> None:
        reload = AsyncMock()
        dispatcher = CommandDispatcher(http, store, on_invalidate=reload)
        await dispatcher.update_event("21313f", title="Keynote")
        reload.assert_awaited_once()

    async def test_invalidate_failure_is_logged(self, http, store, caplog) -> None:
        reload = AsyncMock(side_effect=RequestError("GET", "/data/rundown/normalised", "down"))
        dispatcher = CommandDispatcher(http, store, on_invalidate=reload)
        await dispatcher.update_event("21313f", title="Keynote")
        assert "reload after edit failed" in caplog.text


class TestCustomField:
    async def test_optimistic_value_shown_during_request(self, dispatcher, http, store) -> None:
        seen: list[str] = []

        async def check(event_id: str, field_id: str, value: str) -> dict:
            seen.append(store.rundown.events[event_id].custom[field_id])
            return {"ok": True}

        http.update_custom_field.side_effect = check
        await dispatcher.update_custom_field("421b5a", "Image_Test", "https://example.com/a.png")

        assert seen == ["https://example.com/a.png"]
        assert store.rundown.events["421b5a"].custom["Image_Test"] == "https://example.com/a.png"
        assert store.pending_edits() == 0

    async def test_rollback_on_failure(self, dispatcher, http, store) -> None:
        http.update_custom_field.side_effect = RequestError(
            "PATCH", "/events/421b5a/custom/Image_Test", "rejected", 400
        )
        with pytest.raises(RequestError):
            await dispatcher.update_custom_field("421b5a", "Image_Test", "https://example.com/a.png")
        assert store.rundown.events["421b5a"].custom["Image_Test"] == "old.png"

    async def test_boolean_value_sent_as_text(self, dispatcher, http) -> None:
        await dispatcher.update_custom_field("421b5a", "Flag", True)
        http.update_custom_field.assert_awaited_once_with("421b5a", "Flag", "true")

    async def test_settlement_after_teardown_is_noop(self, dispatcher, http, store) -> None:
        async def slow(event_id: str, field_id: str, value: str) -> dict:
            store.close()
            raise RequestError("PATCH", "/events/x", "late failure")

        http.update_custom_field.side_effect = slow
        with pytest.raises(RequestError):
            await dispatcher.update_custom_field("421b5a", "Image_Test", "new.png")
        assert store.closed
