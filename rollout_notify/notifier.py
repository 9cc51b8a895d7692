"""Deliver turn completions to the notify hook and keep the audit log."""
from __future__ import annotations

import logging
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from rollout_notify import config, observability
from rollout_notify.date_utils import format_utc, utc_date_parts, utc_now
from rollout_notify.models import (
    HookInvocationRecord,
    HookResult,
    NotificationPayload,
    TurnId,
    WatcherFailureRecord,
)

logger = logging.getLogger("rollout_notify.notifier")

# Hooks written as scripts run under the matching interpreter.
_INTERPRETER_BY_SUFFIX: dict[str, Callable[[], str]] = {
    ".py": lambda: sys.executable,
    ".js": lambda: "node",
    ".mjs": lambda: "node",
}


def build_payload(session_id: str, turn_id: TurnId, last_message: str | None) -> NotificationPayload:
    return NotificationPayload(
        thread_id=session_id,
        turn_id=turn_id,
        last_assistant_message=last_message or "",
    )


def hook_command(script: Path, argument: str) -> list[str]:
    interpreter = _INTERPRETER_BY_SUFFIX.get(script.suffix.lower())
    if interpreter is not None:
        return [interpreter(), str(script), argument]
    return [str(script), argument]


class Notifier:
    """Invokes the hook once per completion and appends an audit entry.

    Invocation is synchronous: ``notify`` returns only after the hook exits.
    Hook failures are recorded, never raised.
    """

    def __init__(
        self,
        base_dir: Path,
        notify_script: Optional[Path] = None,
        log_dir: str = config.AUDIT_LOG_DIR,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.notify_script = Path(notify_script) if notify_script else None
        self.log_dir = log_dir
        self._clock = clock

    def audit_log_path(self, when: datetime | None = None) -> Path:
        year, month, day = utc_date_parts(when or self._clock())
        return self.base_dir / self.log_dir / f"{config.AUDIT_LOG_PREFIX}-{year}-{month}-{day}.jsonl"

    def invoke_hook(self, payload: NotificationPayload) -> HookResult:
        if self.notify_script is None:
            return HookResult()

        command = hook_command(self.notify_script, payload.to_argument())
        with observability.start_span("rollout_notify.hook", {"hook": str(self.notify_script)}):
            try:
                completed = subprocess.run(
                    command,
                    cwd=str(self.base_dir),
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    check=False,
                )
            except OSError as exc:
                logger.warning(f"Notify hook {self.notify_script} could not be started: {exc}")
                return HookResult(invoked=True, ok=False, error=str(exc))

        ok = completed.returncode == 0
        if not ok:
            logger.warning(
                "Notify hook %s exited with %s: %s",
                self.notify_script,
                completed.returncode,
                (completed.stderr or "").strip()[:200],
            )
        return HookResult(invoked=True, ok=ok, exit_code=completed.returncode)

    def append_record(self, record: BaseModel) -> bool:
        path = self.audit_log_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(record.model_dump_json(exclude_none=True) + "\n")
        except OSError as exc:
            logger.warning(f"Could not append to audit log {path}: {exc}")
            return False
        return True

    def notify(self, session_id: str, turn_id: TurnId, last_message: str | None, source_file: Path) -> HookResult:
        payload = build_payload(session_id, turn_id, last_message)
        result = self.invoke_hook(payload)
        observability.record_hook_invocation(result)
        self.append_record(
            HookInvocationRecord(
                thread_id=session_id,
                turn_id=turn_id,
                file=str(source_file),
                hook=str(self.notify_script) if self.notify_script else None,
                ok=result.ok,
                exit_code=result.exit_code,
                error=result.error,
                at=format_utc(self._clock()),
            )
        )
        logger.info(f"Notified turn {turn_id} of session {session_id}")
        return result

    def record_failure(self, error: BaseException | str, source_file: Path | None = None) -> bool:
        return self.append_record(
            WatcherFailureRecord(
                error=str(error) or type(error).__name__,
                file=str(source_file) if source_file else None,
                at=format_utc(self._clock()),
            )
        )
