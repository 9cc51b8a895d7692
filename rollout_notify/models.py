"""Pydantic models for rollout records, hook payloads and audit entries."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from rollout_notify import config

TurnId = Union[int, str]

# ── Rollout records ─────────────────────────────────────────────────

SESSION_META = "session_meta"
EVENT_MSG = "event_msg"
TASK_COMPLETE = "task_complete"


class EventRecord(BaseModel):
    """One JSON object from one line of a rollout log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    kind: str = Field("", alias="type")
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: Any = None

    @property
    def payload_kind(self) -> str:
        value = self.payload.get("type")
        return value if isinstance(value, str) else ""


class TurnCompletion(BaseModel):
    model_config = ConfigDict(frozen=True)

    turn_id: TurnId
    last_message: str = ""
    timestamp: Optional[datetime] = None


# ── Hook payload ────────────────────────────────────────────────────

class NotificationPayload(BaseModel):
    """The JSON document handed to the notify hook as its only argument."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(alias="thread-id")
    turn_id: TurnId = Field(alias="turn-id")
    input_messages: list[str] = Field(
        default_factory=lambda: [config.PAYLOAD_INPUT_PLACEHOLDER],
        alias="input-messages",
    )
    last_assistant_message: str = Field("", alias="last-assistant-message")
    source: str = config.PAYLOAD_SOURCE

    def to_argument(self) -> str:
        return self.model_dump_json(by_alias=True)


# ── Audit log ───────────────────────────────────────────────────────

class HookResult(BaseModel):
    invoked: bool = False
    ok: Optional[bool] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None


class HookInvocationRecord(BaseModel):
    type: Literal["hook_invocation"] = "hook_invocation"
    thread_id: str
    turn_id: TurnId
    file: str
    hook: Optional[str] = None
    ok: Optional[bool] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None
    at: str


class WatcherFailureRecord(BaseModel):
    type: Literal["watcher_failure"] = "watcher_failure"
    error: str
    file: Optional[str] = None
    at: str


# ── Runtime settings ────────────────────────────────────────────────

class WatchSettings(BaseModel):
    once: bool = False
    cwd: Path
    notify_script: Optional[Path] = None
    poll_ms: int = Field(config.POLL_MS, ge=1)
    file: Optional[Path] = None
    sessions_dir: Path = config.SESSIONS_DIR

    @property
    def poll_seconds(self) -> float:
        return self.poll_ms / 1000.0
