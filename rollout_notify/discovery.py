"""Locate today's rollout file under the sessions root."""
from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path

from rollout_notify.date_utils import utc_date_parts

logger = logging.getLogger("rollout_notify.discovery")


def session_dir_for(sessions_root: Path, when: date | datetime | None = None) -> Path:
    """Return ``<root>/YYYY/MM/DD`` for the given (or current) UTC date."""
    year, month, day = utc_date_parts(when)
    return Path(sessions_root) / year / month / day


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def find_rollout_file(session_dir: Path) -> Path | None:
    """Return the most recently modified ``*.jsonl`` file in ``session_dir``."""
    if not session_dir.is_dir():
        logger.debug(f"No session directory at {session_dir}")
        return None
    candidates = [p for p in session_dir.glob("*.jsonl") if p.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (_mtime(p), p.name))


def todays_rollout_file(sessions_root: Path, when: date | datetime | None = None) -> Path | None:
    return find_rollout_file(session_dir_for(sessions_root, when))
