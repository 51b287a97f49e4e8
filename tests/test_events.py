"""Typed stream events and follow-up prompt decoding."""

import json

import pytest

from chatflow.errors import EventPayloadError
from chatflow.models.events import (
    EventKind,
    MetadataEvent,
    SourceDocumentsEvent,
    TokenEvent,
    parse_event,
    parse_follow_up_prompts,
)


class TestParseEvent:
    def test_token_from_json_text(self):
        event = parse_event('{"event": "token", "data": "Hi"}')
        assert isinstance(event, TokenEvent)
        assert event.data == "Hi"

    def test_source_documents(self):
        event = parse_event({"event": "sourceDocuments", "data": [{"pageContent": "x"}]})
        assert isinstance(event, SourceDocumentsEvent)
        assert event.data == [{"pageContent": "x"}]

    def test_metadata_aliases(self):
        event = parse_event({
            "event": "metadata",
            "data": {"chatId": "c1", "chatMessageId": "m1", "question": "what?", "memoryType": "buffer"},
        })
        assert isinstance(event, MetadataEvent)
        assert event.data.chat_id == "c1"
        assert event.data.chat_message_id == "m1"
        assert event.data.question == "what?"

    def test_start_and_end_without_payload(self):
        assert parse_event({"event": "start"}).event == EventKind.START
        assert parse_event({"event": "end", "data": "[DONE]"}).event == EventKind.END

    def test_events_are_immutable(self):
        event = parse_event({"event": "token", "data": "a"})
        with pytest.raises(Exception):
            event.data = "b"

    def test_unknown_kind_rejected(self):
        with pytest.raises(EventPayloadError):
            parse_event({"event": "telemetry", "data": {}})

    def test_wrong_payload_shape_rejected(self):
        with pytest.raises(EventPayloadError) as exc:
            parse_event({"event": "token", "data": {"text": "Hi"}})
        assert "token" in str(exc.value)
        assert exc.value.details["raw"]["event"] == "token"

    def test_list_payload_not_coerced(self):
        with pytest.raises(EventPayloadError):
            parse_event({"event": "usedTools", "data": "calculator"})

    def test_not_json(self):
        with pytest.raises(EventPayloadError):
            parse_event("data that is not json")


class TestFollowUpPrompts:
    def test_list_passthrough(self):
        assert parse_follow_up_prompts(["a", "b"]) == ["a", "b"]

    def test_json_string(self):
        assert parse_follow_up_prompts('["a", "b"]') == ["a", "b"]

    def test_double_encoded(self):
        assert parse_follow_up_prompts(json.dumps(json.dumps(["a"]))) == ["a"]

    def test_garbage(self):
        assert parse_follow_up_prompts("not json") == []
        assert parse_follow_up_prompts('{"a": 1}') == []
        assert parse_follow_up_prompts(None) == []
