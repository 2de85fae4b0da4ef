"""
Twilio Media Streams WebSocket Protocol Handler.

Twilio sends JSON messages with events:
- connected: Initial connection
- start: Stream started, contains streamSid and callSid
- media: Audio data as base64 mu-law 8kHz plus a millisecond timestamp
- mark: Playback marker acknowledgment
- dtmf: DTMF tone detected
- stop: Stream stopped

Outbound messages:
- media: Send audio as base64 mu-law 8kHz
- mark: Request playback acknowledgment
- clear: Clear buffered audio (for interruption)

Audio payloads stay base64 encoded end to end: the caller's audio is relayed to
OpenAI Realtime as-is and OpenAI's audio deltas are relayed back as-is.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import msgspec
import structlog

logger = structlog.get_logger(__name__)

# Create global msgspec encoder/decoder
decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()

RESPONSE_PART_MARK = "responsePart"


class UnknownEventError(ValueError):
    """Raised for a well-formed frame carrying an event tag we don't handle."""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


class TwilioEventType(str, Enum):
    """Twilio WebSocket event types."""
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    DTMF = "dtmf"
    STOP = "stop"


@dataclass
class TwilioStartEvent:
    """Parsed Twilio start event."""
    stream_sid: str
    call_sid: str
    account_sid: str
    tracks: List[str]
    custom_parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioStartEvent":
        """Parse from Twilio message."""
        start = message.get("start") or {}
        return cls(
            # Twilio puts streamSid at the top level and inside `start`.
            stream_sid=message.get("streamSid") or start.get("streamSid", ""),
            call_sid=start.get("callSid", ""),
            account_sid=start.get("accountSid", ""),
            tracks=start.get("tracks", []),
            custom_parameters=start.get("customParameters", {}),
        )


@dataclass
class TwilioMediaEvent:
    """Parsed Twilio media event."""
    stream_sid: str
    track: str
    chunk: int
    timestamp: Optional[int]  # Milliseconds since stream start, None if unreadable
    payload: str  # Base64 mu-law audio, untouched

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioMediaEvent":
        """Parse from Twilio message."""
        media = message.get("media") or {}

        try:
            timestamp: Optional[int] = int(media.get("timestamp"))
        except (TypeError, ValueError):
            timestamp = None

        try:
            chunk = int(media.get("chunk", 0))
        except (TypeError, ValueError):
            chunk = 0

        payload = media.get("payload", "")
        return cls(
            stream_sid=message.get("streamSid", ""),
            track=media.get("track", "inbound"),
            chunk=chunk,
            timestamp=timestamp,
            payload=payload if isinstance(payload, str) else "",
        )


@dataclass
class TwilioMarkEvent:
    """Parsed Twilio mark event."""
    stream_sid: str
    name: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioMarkEvent":
        """Parse from Twilio message."""
        mark = message.get("mark") or {}
        return cls(
            stream_sid=message.get("streamSid", ""),
            name=mark.get("name", ""),
        )


def parse_twilio_message(raw_message: str) -> tuple[TwilioEventType, Any]:
    """
    Parse a raw Twilio WebSocket message.

    Args:
        raw_message: Raw JSON string from Twilio

    Returns:
        Tuple of (event_type, parsed_event)

    Raises:
        ValueError: If message cannot be parsed
        UnknownEventError: If the event tag is not one Twilio documents
    """
    try:
        message = decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Invalid message: expected a JSON object")

    event_type_str = message.get("event", "")

    try:
        event_type = TwilioEventType(event_type_str)
    except ValueError:
        raise UnknownEventError(str(event_type_str))

    if event_type == TwilioEventType.START:
        return event_type, TwilioStartEvent.from_message(message)
    elif event_type == TwilioEventType.MEDIA:
        return event_type, TwilioMediaEvent.from_message(message)
    elif event_type == TwilioEventType.MARK:
        return event_type, TwilioMarkEvent.from_message(message)
    else:
        return event_type, message


def create_media_message(stream_sid: str, payload_b64: str) -> str:
    """
    Create a Twilio media message.

    Args:
        stream_sid: The stream SID
        payload_b64: Base64 encoded mu-law audio

    Returns:
        JSON string to send to Twilio
    """
    message = {
        "event": "media",
        "streamSid": stream_sid,
        "media": {
            "payload": payload_b64
        }
    }

    return encoder.encode(message).decode("utf-8")


def create_text_media_message(stream_sid: str, text: str) -> str:
    """Create a media message whose payload is base64 encoded text."""
    payload_b64 = base64.b64encode(text.encode("utf-8")).decode("utf-8")
    return create_media_message(stream_sid, payload_b64)


def create_mark_message(stream_sid: str, name: str = RESPONSE_PART_MARK) -> str:
    """
    Create a Twilio mark message.

    Twilio echoes the mark back once all audio sent before it has played.

    Args:
        stream_sid: The stream SID
        name: Name for this mark

    Returns:
        JSON string to send to Twilio
    """
    message = {
        "event": "mark",
        "streamSid": stream_sid,
        "mark": {
            "name": name
        }
    }

    return encoder.encode(message).decode("utf-8")


def create_clear_message(stream_sid: str) -> str:
    """
    Create a Twilio clear message.

    This clears any buffered audio on Twilio's side, used for interruption.

    Args:
        stream_sid: The stream SID

    Returns:
        JSON string to send to Twilio
    """
    message = {
        "event": "clear",
        "streamSid": stream_sid
    }

    return encoder.encode(message).decode("utf-8")
