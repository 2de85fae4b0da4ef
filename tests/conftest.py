"""
Pytest configuration and fixtures.
"""

import asyncio
import base64
import json
import os
from unittest.mock import patch

import pytest
from websockets.protocol import State


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PUBLIC_HOST": "test.ngrok.io",
        "PORT": "5050",
        "LOG_LEVEL": "DEBUG",
        "OPENAI_API_KEY": "test_openai_key",
        "SLACK_WEBHOOK_URL": "https://hooks.slack.test/services/T000/B000/XXX",
        "SESSION_UPDATE_DELAY_MS": "0",
        "FAREWELL_CLOSE_DELAY_MS": "20",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.intake.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


class FakeRealtimeSocket:
    """Stands in for the OpenAI Realtime websocket client."""

    def __init__(self):
        self.state = State.OPEN
        self.sent: list[dict] = []
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.state = State.CLOSED
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def sent_of_type(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == event_type]


@pytest.fixture
def fake_realtime_socket():
    return FakeRealtimeSocket()


@pytest.fixture
def sample_ulaw_payload():
    """Base64 mu-law audio (20ms of silence)."""
    return base64.b64encode(b"\xff" * 160).decode()


@pytest.fixture
def twilio_start_message():
    """Sample Twilio start message."""
    return json.dumps({
        "event": "start",
        "streamSid": "MZ123456",
        "start": {
            "streamSid": "MZ123456",
            "callSid": "CA789012",
            "accountSid": "AC345678",
            "tracks": ["inbound"],
            "customParameters": {},
        }
    })


@pytest.fixture
def twilio_media_message(sample_ulaw_payload):
    """Sample Twilio media message."""
    return json.dumps({
        "event": "media",
        "streamSid": "MZ123456",
        "media": {
            "track": "inbound",
            "chunk": 1,
            "timestamp": "12345",
            "payload": sample_ulaw_payload,
        }
    })
