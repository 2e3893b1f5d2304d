"""Tests for reqtest.protocol -- frame encoding/decoding and question decode."""

import json

import pytest

from reqtest.protocol import (
    ErrorPayload,
    ProgressPayload,
    ProtocolError,
    ResultsPayload,
    decode_message,
    decode_question,
    encode_message,
)
from reqtest.ws_constants import MESSAGE_TYPES, MSG_CONNECT, MSG_START_ANALYSIS


class TestEncode:

    def test_connect_without_session(self):
        frame = json.loads(encode_message(MSG_CONNECT, payload={}))
        assert frame["type"] == "connect"
        assert frame["payload"] == {}
        assert "sessionId" not in frame
        assert frame["timestamp"] > 1_600_000_000_000  # epoch milliseconds

    def test_session_id_included(self):
        frame = json.loads(encode_message(MSG_START_ANALYSIS, "S1", {"requirement": "r"}))
        assert frame["sessionId"] == "S1"
        assert frame["payload"] == {"requirement": "r"}

    def test_payload_omitted_when_none(self):
        frame = json.loads(encode_message(MSG_CONNECT))
        assert "payload" not in frame


class TestDecode:

    @pytest.mark.parametrize("msg_type", sorted(MESSAGE_TYPES))
    def test_every_protocol_type_accepted(self, msg_type):
        msg = decode_message(json.dumps({"type": msg_type, "timestamp": 5, "payload": {}}))
        assert msg is not None
        assert msg.type == msg_type

    def test_unknown_type_dropped(self):
        assert decode_message('{"type": "telemetry", "timestamp": 1}') is None

    def test_missing_type_dropped(self):
        assert decode_message('{"payload": {}}') is None

    def test_missing_payload_is_empty_object(self):
        msg = decode_message('{"type": "results", "timestamp": 1}')
        assert msg.payload == {}

    def test_unknown_fields_ignored(self):
        msg = decode_message('{"type": "results", "timestamp": 1, "extra": true, "payload": {"a": 1}}')
        assert msg.payload == {"a": 1}
        assert not hasattr(msg, "extra")

    def test_top_level_session_id(self):
        msg = decode_message('{"type": "connect", "sessionId": "abc", "timestamp": 1}')
        assert msg.sessionId == "abc"

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"string"', ""])
    def test_malformed_frames_raise(self, raw):
        with pytest.raises(ProtocolError):
            decode_message(raw)


class TestDecodeQuestion:

    def test_string_payload(self):
        assert decode_question("Which units?") == "Which units?"

    def test_value_preferred_over_response(self):
        assert decode_question({"value": "v", "response": "r"}) == "v"

    def test_response_fallback(self):
        assert decode_question({"response": "r"}) == "r"

    def test_null_value_falls_through(self):
        assert decode_question({"value": None, "response": "r"}) == "r"

    def test_non_string_value_stringified(self):
        assert decode_question({"value": 42}) == "42"

    def test_whole_payload_fallback(self):
        assert json.loads(decode_question({"prompt": "p"})) == {"prompt": "p"}


class TestPayloadModels:

    def test_progress_bounds(self):
        ProgressPayload(stage="completion", progress=100)
        with pytest.raises(ValueError):
            ProgressPayload(stage="completion", progress=101)

    def test_results_defaults(self):
        results = ResultsPayload.model_validate({"insights": ["a"]})
        assert results.conversationHistory == []
        assert results.flowChart is None

    def test_error_payload(self):
        err = ErrorPayload.model_validate({"code": "X", "message": "m", "details": {"k": 1}})
        assert err.recoverable is None
        assert err.details == {"k": 1}
