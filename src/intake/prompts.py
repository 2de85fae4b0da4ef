from __future__ import annotations

from pathlib import Path

import structlog

from src.intake.config import Config

logger = structlog.get_logger(__name__)

_DEFAULT_MAX_PROMPT_CHARS = 40_000

INTAKE_FIELDS = ("name", "email", "problem", "time", "tcp")

DEFAULT_INSTRUCTIONS = """
You are a helpful AI assistant for the {COMPANY_NAME} help desk.
Always speak in English.
Ask for:
- Name
- Email
- Problem description
- Time of occurrence
- TCP domain
Confirm with the user once all fields are collected.
Format the final answer as JSON with keys: name, email, problem, time, tcp.
Stay friendly and respectful.
"""


def _instructions_path(path: str) -> Path:
    file_path = Path(path)
    if file_path.is_absolute():
        return file_path
    # Relative paths are taken from the repo root (src/intake/ -> ../../).
    return Path(__file__).resolve().parents[2] / file_path


def _load_instructions_file(path: str, *, max_chars: int) -> str:
    """Instructions file contents, or "" if unset, missing or unreadable."""
    if not path:
        return ""

    file_path = _instructions_path(path)
    try:
        content = file_path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Instructions file unreadable", path=str(file_path), error=str(e))
        return ""

    if len(content) > max_chars:
        logger.warning("Instructions truncated", path=str(file_path), max_chars=max_chars)
        content = content[:max_chars]
    return content


def resolve_instructions(config: Config, *, max_chars: int = _DEFAULT_MAX_PROMPT_CHARS) -> str:
    """
    Session instructions: the instructions file if it has content, else the
    inline text, else the built-in help-desk prompt. `{COMPANY_NAME}` is
    replaced with the configured company name.
    """
    prompt = (
        _load_instructions_file(config.openai_realtime_instructions_file, max_chars=max_chars)
        or (config.openai_realtime_instructions or "").strip()
        or DEFAULT_INSTRUCTIONS.strip()
    )
    return prompt.replace("{COMPANY_NAME}", config.company_name)
