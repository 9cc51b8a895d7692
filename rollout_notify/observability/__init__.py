"""Observability helpers."""

from rollout_notify.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_hook_invocation,
    record_parser_failure,
    record_poll,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_hook_invocation",
    "record_parser_failure",
    "record_poll",
]
