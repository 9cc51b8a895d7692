import asyncio
import json
import sys
import tempfile
import textwrap
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from rollout_notify.notifier import Notifier
from rollout_notify.watcher import RolloutWatcher, process_file_once

_START = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)


def _line(record: dict) -> str:
    return json.dumps(record) + "\n"


def _meta(session_id: str) -> str:
    return _line({"type": "session_meta", "timestamp": "2026-10-19T09:00:00Z", "payload": {"id": session_id}})


def _complete(turn_id, at: datetime = _START, message: str | None = None) -> str:
    payload = {"type": "task_complete", "turn_id": turn_id}
    if message is not None:
        payload["last_agent_message"] = message
    return _line({"type": "event_msg", "timestamp": at.isoformat().replace("+00:00", "Z"), "payload": payload})


class _RecordingNotifier:
    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[tuple] = []
        self.delay = delay
        self._lock = threading.Lock()

    def notify(self, session_id, turn_id, last_message, source_file):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((session_id, turn_id, last_message, Path(source_file)))


class _RolloutFileCase(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.base = Path(tmpdir.name)
        self.path = self.base / "rollout-2026-10-19T09-00-00-abc.jsonl"
        self.path.write_text("", encoding="utf-8")

    def append(self, text: str) -> None:
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(text)


class OneShotTests(_RolloutFileCase):
    def test_notifies_each_completion_in_file_order(self) -> None:
        self.append(_meta("S-1"))
        self.append(_complete("t1", _START, "first"))
        self.append('{"broken": \n')
        self.append(_complete("t2", _START + timedelta(seconds=5)))
        self.append(_complete("t3", _START + timedelta(minutes=1), "third"))
        notifier = _RecordingNotifier()

        sent = process_file_once(self.path, notifier, start_time=_START)

        self.assertEqual(sent, 3)
        self.assertEqual(
            notifier.calls,
            [
                ("S-1", "t1", "first", self.path),
                ("S-1", "t2", "", self.path),
                ("S-1", "t3", "third", self.path),
            ],
        )

    def test_completion_before_start_is_excluded(self) -> None:
        self.append(_meta("S-1"))
        self.append(_complete("old", _START - timedelta(seconds=1)))
        notifier = _RecordingNotifier()

        self.assertEqual(process_file_once(self.path, notifier, start_time=_START), 0)
        self.assertEqual(notifier.calls, [])

    def test_missing_turn_id_produces_no_notification(self) -> None:
        self.append(_meta("S-1"))
        self.append(_line({"type": "event_msg", "timestamp": "2026-10-19T10:00:01Z", "payload": {"type": "task_complete"}}))
        notifier = _RecordingNotifier()

        self.assertEqual(process_file_once(self.path, notifier, start_time=_START), 0)

    def test_without_session_meta_nothing_is_sent(self) -> None:
        self.append(_complete("t1"))
        notifier = _RecordingNotifier()

        self.assertEqual(process_file_once(self.path, notifier, start_time=_START), 0)
        self.assertEqual(notifier.calls, [])

    def test_second_metadata_record_is_ignored(self) -> None:
        self.append(_meta("S-first"))
        self.append(_meta("S-second"))
        self.append(_complete("t1"))
        notifier = _RecordingNotifier()

        process_file_once(self.path, notifier, start_time=_START)
        self.assertEqual(notifier.calls[0][0], "S-first")

    def test_rerun_notifies_again(self) -> None:
        self.append(_meta("S-1"))
        self.append(_complete("t1"))
        notifier = _RecordingNotifier()

        process_file_once(self.path, notifier, start_time=_START)
        process_file_once(self.path, notifier, start_time=_START)
        self.assertEqual([c[1] for c in notifier.calls], ["t1", "t1"])

    def test_unterminated_last_line_is_processed(self) -> None:
        self.append(_meta("S-1"))
        self.append(_complete("t1").rstrip("\n"))
        notifier = _RecordingNotifier()

        self.assertEqual(process_file_once(self.path, notifier, start_time=_START), 1)

    def test_missing_file_sends_nothing(self) -> None:
        notifier = _RecordingNotifier()
        self.assertEqual(process_file_once(self.base / "gone.jsonl", notifier, start_time=_START), 0)

    def test_end_to_end_with_hook_and_audit_log(self) -> None:
        hook = self.base / "hook.py"
        hook.write_text(
            textwrap.dedent(
                """
                import sys
                with open("hook-calls.jsonl", "a", encoding="utf-8") as fh:
                    fh.write(sys.argv[1] + "\\n")
                """
            ),
            encoding="utf-8",
        )
        self.append(_meta("S-1"))
        self.append(_complete("t1", message="done"))
        notifier = Notifier(self.base, hook, clock=lambda: _START)

        process_file_once(self.path, notifier, start_time=_START)

        calls = [json.loads(l) for l in (self.base / "hook-calls.jsonl").read_text(encoding="utf-8").splitlines()]
        self.assertEqual(calls[0]["thread-id"], "S-1")
        self.assertEqual(calls[0]["turn-id"], "t1")
        self.assertEqual(calls[0]["last-assistant-message"], "done")
        audit = (self.base / ".omx" / "logs" / "turns-2026-10-19.jsonl").read_text(encoding="utf-8").splitlines()
        self.assertEqual(len(audit), 1)
        self.assertEqual(json.loads(audit[0])["file"], str(self.path))


class StreamingTests(_RolloutFileCase, unittest.IsolatedAsyncioTestCase):
    async def _ticks(self, *actions):
        for action in actions:
            action()
            yield None

    def _watcher(self, notifier) -> RolloutWatcher:
        return RolloutWatcher(self.path, notifier, poll_ms=10)

    async def test_existing_content_is_skipped(self) -> None:
        self.append(_meta("S-1"))
        self.append(_complete("historic"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)

        self.assertTrue(await watcher.run(self._ticks(lambda: None, lambda: None)))
        self.assertEqual(notifier.calls, [])
        self.assertEqual(watcher.cursor.offset, self.path.stat().st_size)

    async def test_appended_completion_notifies_once(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)

        await watcher.run(
            self._ticks(
                lambda: self.append(_complete("t1", message="hi")),
                lambda: None,
                lambda: None,
            )
        )
        self.assertEqual(notifier.calls, [("S-1", "t1", "hi", self.path)])

    async def test_no_growth_means_no_notifications(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        self.assertEqual(await watcher.poll_once(), [])
        self.assertEqual(await watcher.poll_once(), [])
        self.assertEqual(notifier.calls, [])

    async def test_completions_in_one_chunk_keep_order(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        self.append(_complete("a") + "not json at all\n" + _complete("b") + _meta("S-other") + _complete("c"))
        completions = await watcher.poll_once()

        self.assertEqual([c.turn_id for c in completions], ["a", "b", "c"])
        self.assertEqual([c[0] for c in notifier.calls], ["S-1", "S-1", "S-1"])

    async def test_partial_line_is_completed_on_next_tick(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        line = _complete("t1")
        self.append(line[:20])
        self.assertEqual(await watcher.poll_once(), [])
        self.append(line[20:])
        completions = await watcher.poll_once()

        self.assertEqual([c.turn_id for c in completions], ["t1"])
        self.assertEqual(len(notifier.calls), 1)

    async def test_line_in_progress_at_start_is_finished_later(self) -> None:
        self.append(_meta("S-1"))
        line = _complete("t1")
        self.append(line[:15])
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        self.append(line[15:])
        await watcher.poll_once()
        self.assertEqual([c[1] for c in notifier.calls], ["t1"])

    async def test_unterminated_record_at_start_is_treated_as_read(self) -> None:
        self.append(_meta("S-1").rstrip("\n"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        self.append(_complete("t1"))
        completions = await watcher.poll_once()

        self.assertEqual([c.turn_id for c in completions], ["t1"])
        self.assertEqual(notifier.calls, [("S-1", "t1", "", self.path)])

    async def test_unterminated_completion_is_notified_once(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        self.append(_complete("t1").rstrip("\n"))
        await watcher.poll_once()
        await watcher.poll_once()
        self.append("\n")
        await watcher.poll_once()

        self.assertEqual([c[1] for c in notifier.calls], ["t1"])

    async def test_first_metadata_without_id_stops_the_watch(self) -> None:
        self.append(_line({"type": "session_meta", "payload": {}}))
        self.append(_meta("S-later"))
        ticked = []
        watcher = self._watcher(_RecordingNotifier())

        self.assertFalse(await watcher.run(self._ticks(lambda: ticked.append(1))))
        self.assertEqual(ticked, [])

    async def test_completion_timestamp_is_not_filtered(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())

        self.append(_complete("t1", datetime(2001, 1, 1, tzinfo=timezone.utc)))
        await watcher.poll_once()
        self.assertEqual(len(notifier.calls), 1)

    async def test_unresolved_session_exits_without_polling(self) -> None:
        self.append(_complete("t1"))
        ticked = []
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)

        self.assertFalse(await watcher.run(self._ticks(lambda: ticked.append(1))))
        self.assertEqual(ticked, [])
        self.assertFalse(watcher.started)

    async def test_stop_prevents_further_ticks(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = self._watcher(notifier)

        def append_then_stop():
            self.append(_complete("late"))
            watcher.stop()

        await watcher.run(self._ticks(lambda: self.append(_complete("t1")), append_then_stop, lambda: None))
        self.assertEqual([c[1] for c in notifier.calls], ["t1"])
        self.assertTrue(watcher.stopped)

    async def test_overlapping_tick_is_skipped(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier(delay=0.2)
        watcher = self._watcher(notifier)
        self.assertTrue(watcher.start())
        self.append(_complete("t1"))

        first, second = await asyncio.gather(watcher.poll_once(), watcher.poll_once())

        self.assertEqual([c.turn_id for c in first], ["t1"])
        self.assertEqual(second, [])
        self.assertEqual(len(notifier.calls), 1)

    async def test_poll_before_start_is_an_error(self) -> None:
        watcher = self._watcher(_RecordingNotifier())
        with self.assertRaises(RuntimeError):
            await watcher.poll_once()

    async def test_file_ticks_drive_notifications(self) -> None:
        self.append(_meta("S-1"))
        notifier = _RecordingNotifier()
        watcher = RolloutWatcher(self.path, notifier, poll_ms=50, force_polling=True)
        task = asyncio.create_task(watcher.run())
        await asyncio.sleep(0.2)

        self.append(_complete("t1"))
        deadline = time.monotonic() + 10
        while not notifier.calls and time.monotonic() < deadline:
            await asyncio.sleep(0.05)

        watcher.stop()
        self.assertTrue(await asyncio.wait_for(task, timeout=10))
        self.assertEqual([c[1] for c in notifier.calls], ["t1"])


if __name__ == "__main__":
    unittest.main()
