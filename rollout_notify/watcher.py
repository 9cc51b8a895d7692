"""One-shot and streaming drivers over a single rollout file.

One-shot mode scans the whole file once and notifies every completion that
happened after the process started. Streaming mode resolves the session,
then tails the file and notifies completions as they are appended.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from watchfiles import awatch

from rollout_notify import config
from rollout_notify.date_utils import utc_now
from rollout_notify.models import TurnCompletion
from rollout_notify.notifier import Notifier
from rollout_notify.parsers.records import LineBuffer, is_complete_record, iter_records, split_lines
from rollout_notify.parsers.rollout import extract_completions, resolve_session_id
from rollout_notify.tail import TailCursor

logger = logging.getLogger("rollout_notify.watcher")


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        logger.debug(f"Could not read {path}: {exc}")
        return b""


def process_file_once(path: Path, notifier: Notifier, start_time: Optional[datetime] = None) -> int:
    """Notify every completion in ``path`` stamped at or after ``start_time``.

    Returns the number of notifications sent. Nothing is remembered between
    runs, so a second pass over the same file notifies the same turns again.
    """
    start_time = start_time or utc_now()
    path = Path(path)
    text = _read_bytes(path).decode("utf-8", errors="replace")
    records = list(iter_records(split_lines(text)))

    session_id = resolve_session_id(records)
    if not session_id:
        logger.info(f"No session_meta record in {path}, nothing to notify")
        return 0

    sent = 0
    for completion in extract_completions(records, not_before=start_time):
        notifier.notify(session_id, completion.turn_id, completion.last_message, path)
        sent += 1
    return sent


class RolloutWatcher:
    """Tails one rollout file for the lifetime of a streaming run.

    Owns the cursor, the partial-line buffer and the resolved session id.
    Ticks are serialized: the tick source only advances after ``poll_once``
    returns, and a re-entrant ``poll_once`` is rejected.
    """

    def __init__(
        self,
        path: Path,
        notifier: Notifier,
        poll_ms: int = config.POLL_MS,
        force_polling: bool = config.FORCE_POLLING,
    ) -> None:
        self.path = Path(path)
        self.notifier = notifier
        self.poll_ms = max(1, int(poll_ms))
        self.force_polling = force_polling
        self.session_id: Optional[str] = None
        self.cursor: Optional[TailCursor] = None
        self._buffer = LineBuffer()
        self._stop_event = asyncio.Event()
        self._tick_in_flight = False

    @property
    def started(self) -> bool:
        return self.cursor is not None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> bool:
        """Resolve the session and position the cursor at the current end.

        Returns ``False`` when the file never announces a session id, in
        which case the watcher must not be run.
        """
        data = _read_bytes(self.path)
        self.session_id = resolve_session_id(iter_records(split_lines(data.decode("utf-8", errors="replace"))))
        if not self.session_id:
            return False

        self.cursor = TailCursor(self.path, len(data))
        # An unterminated last line that is not yet a whole record is still being
        # written; finish it from the next read.
        tail = data.rpartition(b"\n")[2]
        self._buffer = LineBuffer(b"" if is_complete_record(tail) else tail)
        logger.info(f"Watching {self.path} for session {self.session_id} from offset {self.cursor.offset}")
        return True

    def stop(self) -> None:
        self._stop_event.set()

    async def poll_once(self) -> list[TurnCompletion]:
        """Run one tick: read appended bytes and notify each new completion."""
        if self.cursor is None or self.session_id is None:
            raise RuntimeError("RolloutWatcher.poll_once() called before start()")
        if self._tick_in_flight:
            logger.debug("Previous tick still running, skipping")
            return []

        self._tick_in_flight = True
        try:
            lines = self._buffer.feed(self.cursor.poll())
            if not lines:
                return []
            completions = list(extract_completions(iter_records(lines)))
            for completion in completions:
                await asyncio.to_thread(
                    self.notifier.notify,
                    self.session_id,
                    completion.turn_id,
                    completion.last_message,
                    self.path,
                )
            return completions
        finally:
            self._tick_in_flight = False

    async def _file_ticks(self) -> AsyncIterator[Any]:
        """Yield once per file change, or once per poll interval without one."""
        async for changes in awatch(
            self.path,
            watch_filter=None,
            debounce=self.poll_ms,
            step=min(50, self.poll_ms),
            stop_event=self._stop_event,
            rust_timeout=self.poll_ms,
            yield_on_timeout=True,
            force_polling=self.force_polling or None,
            poll_delay_ms=self.poll_ms,
        ):
            yield changes

    async def run(self, ticks: Optional[AsyncIterator[Any]] = None) -> bool:
        """Tail until ``stop()`` is called or the tick source ends.

        Returns ``False`` without polling if no session id could be resolved.
        """
        if not self.started and not self.start():
            logger.info(f"No session_meta record in {self.path}, not watching")
            return False

        source = ticks if ticks is not None else self._file_ticks()
        async with aclosing(source):
            async for _ in source:
                if self.stopped:
                    break
                await self.poll_once()
                if self.stopped:
                    break
        logger.info(f"Stopped watching {self.path}")
        return True
