"""Byte-offset cursor over an append-only file."""
from __future__ import annotations

import logging
from pathlib import Path

from rollout_notify import observability

logger = logging.getLogger("rollout_notify.tail")


def file_size(path: Path) -> int | None:
    try:
        return path.stat().st_size
    except OSError as exc:
        logger.debug(f"stat failed for {path}: {exc}")
        return None


def read_range(path: Path, start: int, end: int) -> bytes | None:
    """Read bytes ``[start, end)``. Returns ``None`` if the read fails."""
    try:
        with path.open("rb") as fh:
            fh.seek(start)
            return fh.read(end - start)
    except OSError as exc:
        logger.debug(f"read failed for {path}: {exc}")
        return None


class TailCursor:
    """Tracks how much of ``path`` has been consumed.

    The offset only ever moves forward. A file that shrinks below the offset
    (truncation, rotation) yields no data rather than an error, and the
    offset stays where it was.
    """

    def __init__(self, path: Path, offset: int = 0) -> None:
        self.path = Path(path)
        self.offset = max(0, int(offset))

    def poll(self) -> bytes:
        """Return bytes appended since the last poll and advance past them."""
        size = file_size(self.path)
        if size is None or size <= self.offset:
            if size is not None and size < self.offset:
                logger.debug(f"{self.path} shrank below offset ({size} < {self.offset}), waiting")
            return b""

        data = read_range(self.path, self.offset, size)
        if data is None:
            return b""

        self.offset += len(data)
        observability.record_poll(len(data))
        return data
