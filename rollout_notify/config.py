"""rollout-notify configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _default_sessions_dir() -> Path:
    explicit = os.getenv("ROLLOUT_NOTIFY_SESSIONS_DIR")
    if explicit:
        return Path(explicit).expanduser()
    codex_home = os.getenv("CODEX_HOME")
    if codex_home:
        return Path(codex_home).expanduser() / "sessions"
    return Path.home() / ".codex" / "sessions"


# Run mode
ONCE = _env_bool("ROLLOUT_NOTIFY_ONCE", False)
BASE_DIR = os.getenv("ROLLOUT_NOTIFY_CWD", "")
NOTIFY_SCRIPT = os.getenv("ROLLOUT_NOTIFY_SCRIPT", "")
POLL_MS = _env_int("ROLLOUT_NOTIFY_POLL_MS", 100)
FORCE_POLLING = _env_bool("ROLLOUT_NOTIFY_FORCE_POLLING", False)

# Session discovery
SESSIONS_DIR = _default_sessions_dir()

# Audit log, relative to the base directory
AUDIT_LOG_DIR = os.getenv("ROLLOUT_NOTIFY_LOG_DIR", os.path.join(".omx", "logs"))
AUDIT_LOG_PREFIX = "turns"

# Hook payload constants
PAYLOAD_SOURCE = "notify-fallback-watcher"
PAYLOAD_INPUT_PLACEHOLDER = "[notify-fallback] synthesized from rollout task_complete"

LOG_LEVEL = os.getenv("ROLLOUT_NOTIFY_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"

# Observability
OTEL_ENABLED = _env_bool("ROLLOUT_NOTIFY_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("ROLLOUT_NOTIFY_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("ROLLOUT_NOTIFY_OTEL_SERVICE_NAME", "rollout-notify")
PROM_PORT = _env_int("ROLLOUT_NOTIFY_PROM_PORT", 0)
