"""
OpenAI Realtime event parsing and client message builders.

Only the server events the bridge acts on get their own enum member; everything
else parses to `RealtimeEventType.OTHER` and is ignored by the bridge.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import msgspec

from src.intake.config import Config

decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()


class RealtimeEventType(str, Enum):
    AUDIO_DELTA = "audio_delta"
    TEXT_DELTA = "text_delta"
    SPEECH_STARTED = "speech_started"
    RESPONSE_DONE = "response_done"
    SESSION_CREATED = "session_created"
    SESSION_UPDATED = "session_updated"
    ERROR = "error"
    OTHER = "other"


# Wire names differ between the GA and beta Realtime APIs; accept both.
_EVENT_TYPES: dict[str, RealtimeEventType] = {
    "response.output_audio.delta": RealtimeEventType.AUDIO_DELTA,
    "response.audio.delta": RealtimeEventType.AUDIO_DELTA,
    "response.output_text.delta": RealtimeEventType.TEXT_DELTA,
    "response.text.delta": RealtimeEventType.TEXT_DELTA,
    "input_audio_buffer.speech_started": RealtimeEventType.SPEECH_STARTED,
    "response.done": RealtimeEventType.RESPONSE_DONE,
    "response.completed": RealtimeEventType.RESPONSE_DONE,
    "session.created": RealtimeEventType.SESSION_CREATED,
    "session.updated": RealtimeEventType.SESSION_UPDATED,
    "error": RealtimeEventType.ERROR,
}


@dataclass(frozen=True)
class RealtimeEvent:
    kind: RealtimeEventType
    type: str
    delta: str = ""
    item_id: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


def parse_realtime_event(raw_message: str | bytes) -> RealtimeEvent:
    """
    Parse a raw OpenAI Realtime server event.

    Raises:
        ValueError: If the message is not a JSON object
    """
    try:
        message = decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Invalid event: expected a JSON object")

    event_type = str(message.get("type") or "")
    kind = _EVENT_TYPES.get(event_type, RealtimeEventType.OTHER)

    delta = message.get("delta")
    if not isinstance(delta, str):
        delta = ""
    item_id = message.get("item_id")
    if not isinstance(item_id, str) or not item_id:
        item_id = None

    return RealtimeEvent(kind=kind, type=event_type, delta=delta, item_id=item_id, raw=message)


def build_session_update(config: Config, instructions: str) -> dict[str, Any]:
    """Build the one-time `session.update` sent once the socket opens."""
    audio_format = {"type": config.openai_audio_format}
    return {
        "type": "session.update",
        "session": {
            "type": "realtime",
            "model": config.openai_realtime_model,
            "output_modalities": list(config.openai_output_modalities),
            "audio": {
                "input": {"format": dict(audio_format)},
                "output": {"format": dict(audio_format), "voice": config.openai_realtime_voice},
            },
            "instructions": instructions,
        },
    }


def build_audio_append(payload_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": payload_b64}


def build_truncate(item_id: str, audio_end_ms: int, content_index: int = 0) -> dict[str, Any]:
    return {
        "type": "conversation.item.truncate",
        "item_id": item_id,
        "content_index": content_index,
        "audio_end_ms": audio_end_ms,
    }


def encode_event(message: dict[str, Any]) -> str:
    return encoder.encode(message).decode("utf-8")
