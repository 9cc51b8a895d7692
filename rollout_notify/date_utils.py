"""Timestamp parsing and UTC date helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_FRACTION_RE = re.compile(r"\.(\d+)")


def _normalize_fraction(token: str) -> str:
    """Pad or cut fractional seconds to six digits for ``fromisoformat``."""
    return _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], token, count=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 token into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns ``None`` for anything that
    does not parse.
    """
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(_normalize_fraction(cleaned.replace("Z", "+00:00")))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_date_parts(value: date | datetime | None = None) -> tuple[str, str, str]:
    """Return zero-padded ``(YYYY, MM, DD)`` for the given (or current) UTC date."""
    if value is None:
        value = utc_now()
    if isinstance(value, datetime):
        value = (value if value.tzinfo else value.replace(tzinfo=timezone.utc)).astimezone(timezone.utc).date()
    return f"{value.year:04d}", f"{value.month:02d}", f"{value.day:02d}"
