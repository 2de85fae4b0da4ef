"""
Structured extraction of the help-desk intake record.

The assistant is instructed to emit its final answer as a JSON object with keys
name, email, problem, time and tcp. Text deltas are inspected one at a time:
a delta that is, on its own, a complete JSON object is merged into the record.
Anything else (spoken prose, partial JSON split across deltas) is dropped
without complaint; the assistant is expected to emit the object in one piece.
"""

from typing import Any, Dict, Optional

import msgspec
import structlog
from pydantic import BaseModel, Field

from src.intake.prompts import INTAKE_FIELDS

logger = structlog.get_logger(__name__)


class IntakeRecord(BaseModel):
    """Five-field record collected from the caller."""

    name: Optional[str] = Field(default=None, description="The caller's name")
    email: Optional[str] = Field(default=None, description="The caller's email address")
    problem: Optional[str] = Field(default=None, description="Description of the problem")
    time: Optional[str] = Field(default=None, description="When the problem occurred")
    tcp: Optional[str] = Field(default=None, description="The caller's TCP domain")

    def merge(self, fields: Dict[str, Any]) -> list[str]:
        """
        Merge recognised keys into the record (last write wins).

        Unknown keys are ignored. Null and blank values are skipped so a set key
        is never cleared. Returns the names of the keys that were updated.
        """
        updated = []
        for key in INTAKE_FIELDS:
            if key not in fields:
                continue
            value = _coerce_value(fields[key])
            if value is None:
                continue
            setattr(self, key, value)
            updated.append(key)
        return updated

    def is_complete(self) -> bool:
        return all(getattr(self, key) for key in INTAKE_FIELDS)

    def has_any(self) -> bool:
        return any(getattr(self, key) for key in INTAKE_FIELDS)

    def missing_fields(self) -> list[str]:
        return [key for key in INTAKE_FIELDS if not getattr(self, key)]


def _coerce_value(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        text = "yes" if value else "no"
    else:
        text = str(value).strip()
    return text or None


def extract_fields(fragment: str) -> Optional[Dict[str, Any]]:
    """
    Interpret a text fragment as a complete JSON object.

    Returns the decoded object, or None when the fragment is not a
    self-contained JSON object.
    """
    if not isinstance(fragment, str):
        return None

    candidate = fragment.strip()
    if not (candidate.startswith("{") and candidate.endswith("}")):
        return None

    try:
        parsed = msgspec.json.decode(candidate.encode("utf-8"))
    except msgspec.DecodeError:
        return None

    if not isinstance(parsed, dict):
        return None
    return parsed


class FieldExtractor:
    """Feeds assistant text fragments into an IntakeRecord."""

    def __init__(self, record: Optional[IntakeRecord] = None):
        self.record = record if record is not None else IntakeRecord()

    def feed(self, fragment: str) -> bool:
        """Returns True if the fragment updated the record."""
        fields = extract_fields(fragment)
        if fields is None:
            return False

        updated = self.record.merge(fields)
        if updated:
            logger.info(
                "Intake record updated",
                updated=updated,
                missing=self.record.missing_fields(),
            )
        return bool(updated)
