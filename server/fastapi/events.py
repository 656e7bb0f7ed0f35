"""
Chat stream events

Wire format (server-sent events):

    event: <kind>
    data: <payload>
    <blank line>

``text`` carries plain text (one ``data:`` line per line of text),
``text_clear`` an empty payload, every other kind a JSON document.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TEXT = "text"
TEXT_CLEAR = "text_clear"
TOOL_START = "tool_start"
TOOL_DATA = "tool_data"
PLACES_UPDATE = "places_update"
ERROR = "error"
DONE = "done"

EVENT_KINDS = frozenset({TEXT, TEXT_CLEAR, TOOL_START, TOOL_DATA, PLACES_UPDATE, ERROR, DONE})
PLAIN_TEXT_KINDS = frozenset({TEXT, TEXT_CLEAR})

RECORD_SEPARATOR = b"\n\n"

# Shown to the user whenever a turn fails after streaming started
STREAM_ERROR_MESSAGE = "Sorry, I'm having trouble connecting right now. Please try again in a moment."


@dataclass(frozen=True)
class StreamEvent:
    kind: str
    data: Any = None


def encode_event(kind: str, data: Any = None) -> str:
    if kind not in EVENT_KINDS:
        raise ValueError(f"Unknown event kind: {kind}")

    if kind in PLAIN_TEXT_KINDS:
        payload = "" if data is None else str(data)
    else:
        payload = json.dumps({} if data is None else data, ensure_ascii=False)

    data_lines = "\n".join(f"data: {line}" for line in payload.split("\n"))
    return f"event: {kind}\n{data_lines}\n\n"


def split_records(buffer: bytes) -> tuple[list[bytes], bytes]:
    """Split buffered bytes into complete records and the unterminated rest.

    Pure function: the remainder must be prepended to the next chunk.
    """
    parts = buffer.split(RECORD_SEPARATOR)
    remainder = parts.pop()
    return [p for p in parts if p.strip()], remainder


def parse_record(record: bytes) -> StreamEvent | None:
    """Parse one complete record; None for records that should be dropped."""
    try:
        text = record.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Dropping undecodable stream record")
        return None

    kind = None
    data_lines = []
    for line in text.split("\n"):
        if line.startswith("event:"):
            kind = line[len("event:"):].strip()
        elif line.startswith("data:"):
            value = line[len("data:"):]
            data_lines.append(value[1:] if value.startswith(" ") else value)

    if kind not in EVENT_KINDS:
        return None

    payload = "\n".join(data_lines)
    if kind in PLAIN_TEXT_KINDS:
        return StreamEvent(kind, payload)

    try:
        return StreamEvent(kind, json.loads(payload) if payload else {})
    except json.JSONDecodeError:
        logger.warning("Dropping %s event with invalid JSON payload", kind)
        return None
