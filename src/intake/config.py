"""
Configuration management for the call intake bridge.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


DEFAULT_FAREWELL_TEXT = (
    "<speak>Thank you for calling. We are working on your problem right now. "
    "Have a great day!</speak>"
)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    # - public_host is optional; the call-setup webhook falls back to the request Host header
    public_host: str = ""
    port: int = 5050
    log_level: str = "INFO"

    # OpenAI Realtime
    openai_api_key: str = ""
    openai_realtime_model: str = "gpt-4o-realtime-preview"
    openai_realtime_voice: str = "verse"
    openai_realtime_temperature: float = 0.8
    openai_output_modalities: Tuple[str, ...] = ("audio",)
    openai_audio_format: str = "audio/pcmu"
    openai_realtime_instructions: str = ""
    openai_realtime_instructions_file: str = ""
    session_update_delay_ms: int = 100

    # Slack (notification sink)
    slack_webhook_url: str = ""
    notify_timeout_seconds: float = 10.0

    # Call flow
    company_name: str = "The Clinician"
    greeting_voice: str = "Google.en-US-Chirp3-HD-Aoede"
    farewell_text: str = DEFAULT_FAREWELL_TEXT
    farewell_close_delay_ms: int = 2000

    @property
    def realtime_url(self) -> str:
        """Get the OpenAI Realtime WebSocket URL."""
        return (
            f"wss://api.openai.com/v1/realtime?model={self.openai_realtime_model}"
            f"&temperature={self.openai_realtime_temperature}"
            f"&voice={self.openai_realtime_voice}"
        )

    def media_stream_url(self, request_host: str = "") -> str:
        """Get the WebSocket URL Twilio should stream call audio to."""
        host = self.public_host or request_host
        return f"wss://{host}/media-stream"

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.slack_webhook_url:
            missing.append("SLACK_WEBHOOK_URL")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

        if not self.openai_output_modalities:
            raise ConfigError("OPENAI_OUTPUT_MODALITIES must name at least one modality.")

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            public_host=self.public_host or None,
            port=self.port,
            log_level=self.log_level,
            realtime_model=self.openai_realtime_model,
            realtime_voice=self.openai_realtime_voice,
            realtime_temperature=self.openai_realtime_temperature,
            output_modalities=list(self.openai_output_modalities),
            audio_format=self.openai_audio_format,
            instructions_file=self.openai_realtime_instructions_file or None,
            session_update_delay_ms=self.session_update_delay_ms,
            farewell_close_delay_ms=self.farewell_close_delay_ms,
            company_name=self.company_name,
            openai_key_set=bool(self.openai_api_key),
            slack_webhook_set=bool(self.slack_webhook_url),
        )


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_list(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Get a comma separated list from environment variable."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        # Server
        public_host=os.getenv("PUBLIC_HOST", "").strip(),
        port=_get_int("PORT", 5050),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # OpenAI Realtime
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_realtime_model=os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview"),
        openai_realtime_voice=os.getenv("OPENAI_REALTIME_VOICE", "verse"),
        openai_realtime_temperature=_get_float("OPENAI_REALTIME_TEMPERATURE", 0.8),
        openai_output_modalities=_get_list("OPENAI_OUTPUT_MODALITIES", ("audio",)),
        openai_audio_format=os.getenv("OPENAI_AUDIO_FORMAT", "audio/pcmu"),
        openai_realtime_instructions=os.getenv("OPENAI_REALTIME_INSTRUCTIONS", ""),
        openai_realtime_instructions_file=os.getenv("OPENAI_REALTIME_INSTRUCTIONS_FILE", ""),
        session_update_delay_ms=max(0, _get_int("SESSION_UPDATE_DELAY_MS", 100)),

        # Slack
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL", ""),
        notify_timeout_seconds=_get_float("NOTIFY_TIMEOUT_SECONDS", 10.0),

        # Call flow
        company_name=os.getenv("COMPANY_NAME", "The Clinician"),
        greeting_voice=os.getenv("GREETING_VOICE", "Google.en-US-Chirp3-HD-Aoede"),
        farewell_text=os.getenv("FAREWELL_TEXT", DEFAULT_FAREWELL_TEXT),
        farewell_close_delay_ms=max(0, _get_int("FAREWELL_CLOSE_DELAY_MS", 2000)),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
