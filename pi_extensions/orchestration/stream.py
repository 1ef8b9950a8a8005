"""
Stream framing for subagent stdout.

A subagent in JSON mode writes one JSON object per line. Reads arrive in
arbitrary chunks, so NdjsonLineBuffer reassembles complete lines (decoding
UTF-8 incrementally so a multi-byte character split across two reads survives)
and decode_event turns each line into one of the stream event variants.
"""

from __future__ import annotations

import codecs
import json
from typing import Optional

import structlog
from pydantic import ValidationError

from pi_extensions.orchestration.models import (
    MessageEndEvent,
    StreamEvent,
    ToolResultEndEvent,
    UnrecognizedEvent,
)

logger = structlog.get_logger(__name__)

_EVENT_TYPES: dict[str, type[MessageEndEvent] | type[ToolResultEndEvent]] = {
    "message_end": MessageEndEvent,
    "tool_result_end": ToolResultEndEvent,
}


def decode_event(line: str) -> Optional[StreamEvent]:
    """Decode one line into a stream event.

    Returns None for blank lines and anything that is not a JSON object;
    returns UnrecognizedEvent for objects of an unknown type or that are
    missing the fields their type requires.
    """
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    event_type = data.get("type")
    event_cls = _EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if event_cls is None:
        return UnrecognizedEvent(type=event_type if isinstance(event_type, str) else "")
    try:
        return event_cls.model_validate(data)
    except ValidationError as e:
        logger.debug("subagent.stream.malformed_event", type=event_type, errors=e.error_count())
        return UnrecognizedEvent(type=event_type)


class NdjsonLineBuffer:
    """Reassembles newline-delimited records from byte chunks."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completed, in order."""
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return lines

    def flush(self) -> Optional[str]:
        """Return the trailing partial line at end of stream, if it has content."""
        self._pending += self._decoder.decode(b"", final=True)
        rest, self._pending = self._pending, ""
        return rest if rest.strip() else None
