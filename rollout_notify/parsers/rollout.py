"""Session identity and turn-completion extraction from rollout records."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from rollout_notify.date_utils import parse_timestamp
from rollout_notify.models import EVENT_MSG, SESSION_META, TASK_COMPLETE, EventRecord, TurnCompletion, TurnId

logger = logging.getLogger("rollout_notify.parser")


def _session_id_of(record: EventRecord) -> str | None:
    value = record.payload.get("id")
    if isinstance(value, str) and value.strip():
        return value
    return None


def resolve_session_id(records: Iterable[EventRecord]) -> str | None:
    """Return the id of the first ``session_meta`` record.

    Scanning stops at that record. If it carries no usable id the session
    stays unresolved; later metadata records are never consulted.
    """
    for record in records:
        if record.kind != SESSION_META:
            continue
        session_id = _session_id_of(record)
        if not session_id:
            logger.debug("First session_meta record has no id, session unresolved")
        return session_id
    return None


def is_task_complete(record: EventRecord) -> bool:
    return record.kind == EVENT_MSG and record.payload_kind == TASK_COMPLETE


def _normalize_turn_id(value: Any) -> TurnId | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        return value
    return None


def to_completion(record: EventRecord) -> TurnCompletion | None:
    """Build a ``TurnCompletion`` from a task_complete record.

    Returns ``None`` for any other record and for completions without a
    usable ``turn_id``.
    """
    if not is_task_complete(record):
        return None
    turn_id = _normalize_turn_id(record.payload.get("turn_id"))
    if turn_id is None:
        logger.debug("task_complete record without turn_id, skipping")
        return None
    last_message = record.payload.get("last_agent_message")
    return TurnCompletion(
        turn_id=turn_id,
        last_message=last_message if isinstance(last_message, str) else "",
        timestamp=parse_timestamp(record.timestamp),
    )


def extract_completions(
    records: Iterable[EventRecord],
    not_before: datetime | None = None,
) -> Iterator[TurnCompletion]:
    """Yield turn completions in record order.

    With ``not_before`` set, completions whose timestamp parses to an instant
    strictly earlier than it are dropped. Completions with a missing or
    unparseable timestamp are kept.
    """
    if not_before is not None and not_before.tzinfo is None:
        not_before = not_before.replace(tzinfo=timezone.utc)
    for record in records:
        completion = to_completion(record)
        if completion is None:
            continue
        if not_before is not None and completion.timestamp is not None and completion.timestamp < not_before:
            continue
        yield completion
