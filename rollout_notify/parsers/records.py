"""Turn raw rollout text into ``EventRecord`` instances.

Rollout logs are JSON Lines. Every line is decoded on its own so one broken
line never hides the records after it.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, Iterator

from pydantic import ValidationError

from rollout_notify import observability
from rollout_notify.models import EventRecord

logger = logging.getLogger("rollout_notify.parser")


def split_lines(text: str) -> list[str]:
    """Split on LF and drop empty entries.

    An unterminated last line is returned as a complete line.
    """
    return [line for line in text.split("\n") if line]


def parse_record(line: str) -> EventRecord | None:
    """Decode one line, returning ``None`` when it is not a usable record."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed rollout line: %.80s", line)
        observability.record_parser_failure("json")
        return None
    if not isinstance(data, dict):
        return None
    try:
        return EventRecord.model_validate(data)
    except ValidationError as exc:
        logger.debug("Skipping rollout record with unexpected shape: %s", exc.errors()[:1])
        observability.record_parser_failure("record")
        return None


def iter_records(lines: Iterable[str]) -> Iterator[EventRecord]:
    for line in lines:
        record = parse_record(line)
        if record is not None:
            yield record


def is_complete_record(data: bytes) -> bool:
    """True when ``data`` is a whole JSON object, i.e. a finished line missing only its LF."""
    if not data.strip():
        return False
    try:
        return isinstance(json.loads(data.decode("utf-8")), dict)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return False


class LineBuffer:
    """Accumulate appended bytes and release only complete lines.

    Bytes after the last LF are held until a later ``feed`` completes them,
    unless they already form a whole JSON object, in which case they are
    released as a line. Buffering happens before decoding, so a UTF-8
    sequence split across two reads is decoded intact.
    """

    def __init__(self, pending: bytes = b"") -> None:
        self._pending = pending

    @property
    def pending(self) -> bytes:
        return self._pending

    def feed(self, data: bytes) -> list[str]:
        if not data:
            return []
        head, sep, tail = (self._pending + data).rpartition(b"\n")
        lines = split_lines(head.decode("utf-8", errors="replace")) if sep else []
        if is_complete_record(tail):
            lines.append(tail.decode("utf-8"))
            tail = b""
        self._pending = tail
        return lines
