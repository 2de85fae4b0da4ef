import json

import pytest

from src.intake.config import Config
from src.intake.realtime_protocol import (
    RealtimeEventType,
    build_audio_append,
    build_session_update,
    build_truncate,
    parse_realtime_event,
)


@pytest.mark.parametrize(
    "wire_type, kind",
    [
        ("response.output_audio.delta", RealtimeEventType.AUDIO_DELTA),
        ("response.audio.delta", RealtimeEventType.AUDIO_DELTA),
        ("response.output_text.delta", RealtimeEventType.TEXT_DELTA),
        ("input_audio_buffer.speech_started", RealtimeEventType.SPEECH_STARTED),
        ("response.done", RealtimeEventType.RESPONSE_DONE),
        ("response.completed", RealtimeEventType.RESPONSE_DONE),
        ("session.created", RealtimeEventType.SESSION_CREATED),
        ("error", RealtimeEventType.ERROR),
        ("rate_limits.updated", RealtimeEventType.OTHER),
    ],
)
def test_parse_event_kind(wire_type, kind):
    event = parse_realtime_event(json.dumps({"type": wire_type}))
    assert event.kind == kind
    assert event.type == wire_type


def test_parse_audio_delta_fields():
    event = parse_realtime_event(
        json.dumps({"type": "response.output_audio.delta", "delta": "AAEC", "item_id": "I1"})
    )
    assert event.delta == "AAEC"
    assert event.item_id == "I1"


def test_parse_accepts_bytes():
    event = parse_realtime_event(b'{"type": "session.updated"}')
    assert event.kind == RealtimeEventType.SESSION_UPDATED


def test_parse_rejects_garbage():
    with pytest.raises(ValueError):
        parse_realtime_event("{not json")
    with pytest.raises(ValueError):
        parse_realtime_event('"just a string"')


def test_session_update_shape():
    config = Config(openai_api_key="k", slack_webhook_url="https://hooks")
    message = build_session_update(config, "Be helpful.")

    assert message["type"] == "session.update"
    session = message["session"]
    assert session["type"] == "realtime"
    assert session["model"] == "gpt-4o-realtime-preview"
    assert session["output_modalities"] == ["audio"]
    assert session["audio"]["input"]["format"] == {"type": "audio/pcmu"}
    assert session["audio"]["output"]["format"] == {"type": "audio/pcmu"}
    assert session["instructions"] == "Be helpful."


def test_audio_append_and_truncate():
    assert build_audio_append("AAAA") == {"type": "input_audio_buffer.append", "audio": "AAAA"}
    assert build_truncate("I1", 250) == {
        "type": "conversation.item.truncate",
        "item_id": "I1",
        "content_index": 0,
        "audio_end_ms": 250,
    }
