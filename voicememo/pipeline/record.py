"""Classified memo records and the markdown entry they are persisted as."""

import json
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import ClassificationError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RecordType(str, Enum):
    DAILY_NOTE = "dailynote"
    PLAIN = "plain"


class Record(BaseModel):
    """A classified memo: exactly a type and its refined content."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: RecordType
    content: str


def extract_json(text: str) -> str:
    """Cut the outermost ``{...}`` out of a model reply, e.g. inside a code fence."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def parse_record(text: str) -> Record:
    """
    Parse a classifier reply into a Record.

    Args:
        text: Raw model output, expected to hold one JSON object

    Returns:
        The validated record

    Raises:
        ClassificationError: If the reply is not an object with exactly
            ``type`` and ``content``
    """
    if not text or not text.strip():
        raise ClassificationError("Empty response from classifier")

    try:
        return Record.model_validate_json(extract_json(text.strip()))
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'root'}: {err['msg']}"
            for err in e.errors()
        )
        raise ClassificationError(f"Malformed classifier output: {details}") from e


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.strftime(TIMESTAMP_FORMAT)


def format_entry(record: Record, timestamp: datetime) -> str:
    """Render a record as a level-6 heading plus a fenced JSON block."""
    return (
        f"\n\n###### {format_timestamp(timestamp)}\n\n"
        "```json\n"
        "{\n"
        f'    "type": "{record.type.value}",\n'
        f'    "content": {json.dumps(record.content, ensure_ascii=False)}\n'
        "}\n"
        "```\n"
    )
