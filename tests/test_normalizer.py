"""Tests for the message normalizer."""

from __future__ import annotations

import json

import pytest

from ontime_sync.core.errors import MalformedFrame
from ontime_sync.core.normalizer import (
    EnvelopeKind,
    decode_frame,
    envelope_from_value,
    normalize_frame,
)


class TestDecodeFrame:
    def test_decodes_text(self) -> None:
        assert decode_frame('{"topic": "timer"}') == {"topic": "timer"}

    def test_decodes_bytes(self) -> None:
        assert decode_frame(b'{"a": 1}') == {"a": 1}

    def test_passes_through_decoded_values(self) -> None:
        value = {"topic": "poll", "payload": {}}
        assert decode_frame(value) is value

    @pytest.mark.parametrize("raw", ["", "   ", None, "{not json", b"\xff\xfe\xfd"])
    def test_malformed_raises(self, raw) -> None:
        with pytest.raises(MalformedFrame):
            decode_frame(raw)


class TestEnvelopeShapes:
    def test_topic_payload_shape(self) -> None:
        env = normalize_frame(json.dumps({"topic": "ontime", "payload": {"timer": {}}}))
        assert env is not None
        assert env.topic == "ontime"
        assert env.payload == {"timer": {}}
        assert env.kind is EnvelopeKind.STATE

    def test_type_data_shape(self) -> None:
        env = normalize_frame('{"type": "ontime-clock", "data": {"clock": 1000}}')
        assert env is not None
        assert env.topic == "ontime-clock"
        assert env.payload == {"clock": 1000}

    def test_type_with_payload_key(self) -> None:
        env = normalize_frame('{"type": "runtime", "payload": {"numEvents": 3}}')
        assert env is not None
        assert env.payload == {"numEvents": 3}

    def test_type_without_data_uses_whole_object(self) -> None:
        frame = {"type": "playback", "state": "start"}
        env = envelope_from_value(frame)
        assert env is not None
        assert env.payload == frame

    def test_bare_object_is_unknown_data(self) -> None:
        frame = {"timer": {"current": 5000}, "playback": {"state": "pause"}}
        env = normalize_frame(json.dumps(frame))
        assert env is not None
        assert env.topic == "unknown-data"
        assert env.kind is EnvelopeKind.UNKNOWN_DATA
        assert env.payload == frame

    def test_topic_is_lowercased_and_stripped(self) -> None:
        env = normalize_frame('{"topic": "  ONTIME-Poll ", "payload": {}}')
        assert env is not None
        assert env.topic == "ontime-poll"
        assert env.kind is EnvelopeKind.STATE

    def test_non_text_topic_becomes_unknown(self) -> None:
        env = normalize_frame('{"topic": 42, "payload": {"x": 1}}')
        assert env is not None
        assert env.topic == "unknown"
        assert env.kind is EnvelopeKind.UNRECOGNIZED

    def test_null_topic_becomes_unknown(self) -> None:
        env = normalize_frame('{"topic": null, "payload": {"x": 1}}')
        assert env is not None
        assert env.topic == "unknown"

    def test_unrecognized_topic_keeps_raw_payload(self) -> None:
        env = normalize_frame('{"topic": "refetch", "payload": {"target": "rundown"}}')
        assert env is not None
        assert env.kind is EnvelopeKind.UNRECOGNIZED
        assert env.payload == {"target": "rundown"}

    def test_error_topic(self) -> None:
        env = normalize_frame('{"topic": "error", "payload": "bad request"}')
        assert env is not None
        assert env.kind is EnvelopeKind.ERROR
        assert env.payload == "bad request"

    def test_clock_number_payload_is_forwarded(self) -> None:
        env = normalize_frame('{"topic": "ontime-clock", "payload": 43200000}')
        assert env is not None
        assert env.payload == 43200000
        assert not env.is_object


class TestDropped:
    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "not json at all",
            "[1, 2, 3]",
            "42",
            '"just a string"',
            "null",
            b"\xc3\x28",
            "[" * 200000,
        ],
    )
    def test_malformed_or_non_object_frames_never_raise(self, raw) -> None:
        assert normalize_frame(raw) is None

    def test_oversized_integer_never_raises(self) -> None:
        frame = '{"topic": "timer", "payload": {"timer": {"current": ' + "9" * 5000 + "}}}"
        envelope = normalize_frame(frame)
        assert envelope is None or envelope.topic == "timer"

    def test_unrecognized_topic_with_scalar_payload_dropped(self) -> None:
        assert normalize_frame('{"topic": "refetch", "payload": 3}') is None

    def test_missing_payload_dropped(self) -> None:
        assert normalize_frame('{"topic": "timer"}') is None

    def test_malformed_frame_is_logged(self, caplog) -> None:
        with caplog.at_level("WARNING"):
            normalize_frame("{broken")
        assert "Malformed frame" in caplog.text
