import os
from pathlib import Path
from unittest.mock import patch

import pytest


def test_config_reads_environment():
    from src.intake.config import get_config

    config = get_config()
    config.validate()

    assert config.openai_api_key == "test_openai_key"
    assert config.session_update_delay_ms == 0
    assert config.farewell_close_delay_ms == 20
    assert config.media_stream_url() == "wss://test.ngrok.io/media-stream"


def test_config_defaults():
    from src.intake.config import get_config

    env = {"OPENAI_API_KEY": "k", "SLACK_WEBHOOK_URL": "https://hooks.slack.test/x"}
    with patch.dict(os.environ, env, clear=True):
        get_config.cache_clear()
        config = get_config()

    assert config.port == 5050
    assert config.session_update_delay_ms == 100
    assert config.farewell_close_delay_ms == 2000
    assert config.openai_output_modalities == ("audio",)
    assert config.media_stream_url("example.com") == "wss://example.com/media-stream"
    assert "temperature=0.8" in config.realtime_url
    assert "voice=verse" in config.realtime_url


@pytest.mark.parametrize(
    "env, missing",
    [
        ({"SLACK_WEBHOOK_URL": "https://hooks.slack.test/x"}, "OPENAI_API_KEY"),
        ({"OPENAI_API_KEY": "k"}, "SLACK_WEBHOOK_URL"),
    ],
)
def test_config_validate_requires_credentials(env, missing):
    from src.intake.config import ConfigError, get_config

    with patch.dict(os.environ, env, clear=True):
        get_config.cache_clear()
        config = get_config()
        with pytest.raises(ConfigError, match=missing):
            config.validate()


def test_config_parses_modalities_and_bad_numbers():
    from src.intake.config import get_config

    env = {
        "OPENAI_API_KEY": "k",
        "SLACK_WEBHOOK_URL": "https://hooks.slack.test/x",
        "OPENAI_OUTPUT_MODALITIES": "audio, text",
        "PORT": "not-a-port",
    }
    with patch.dict(os.environ, env, clear=True):
        get_config.cache_clear()
        config = get_config()

    assert config.openai_output_modalities == ("audio", "text")
    assert config.port == 5050


def test_instructions_resolution(tmp_path: Path):
    from src.intake.config import Config
    from src.intake.prompts import resolve_instructions

    base = Config(openai_api_key="k", slack_webhook_url="x", company_name="Acme")
    assert "Acme help desk" in resolve_instructions(base)

    inline = Config(openai_api_key="k", slack_webhook_url="x", openai_realtime_instructions="Be brief.")
    assert resolve_instructions(inline) == "Be brief."

    prompt_file = tmp_path / "prompt.txt"
    prompt_file.write_text("Support for {COMPANY_NAME}.", encoding="utf-8")
    from_file = Config(
        openai_api_key="k",
        slack_webhook_url="x",
        company_name="Acme",
        openai_realtime_instructions="Be brief.",
        openai_realtime_instructions_file=str(prompt_file),
    )
    assert resolve_instructions(from_file) == "Support for Acme."

    missing_file = Config(
        openai_api_key="k",
        slack_webhook_url="x",
        openai_realtime_instructions_file=str(tmp_path / "nope.txt"),
    )
    assert "JSON" in resolve_instructions(missing_file)


def test_long_instructions_file_is_truncated(tmp_path: Path):
    from src.intake.config import Config
    from src.intake.prompts import resolve_instructions

    prompt_file = tmp_path / "long.txt"
    prompt_file.write_text("x" * 50, encoding="utf-8")
    config = Config(openai_api_key="k", slack_webhook_url="x", openai_realtime_instructions_file=str(prompt_file))

    assert resolve_instructions(config, max_chars=10) == "x" * 10
