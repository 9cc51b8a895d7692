#!/usr/bin/env python3
"""rollout-notify: forward rollout turn completions to a notify hook.

Usage:
  rollout-notify --cwd ~/project --notify-script ~/project/notify-hook.py
  rollout-notify --once --cwd ~/project --notify-script ~/project/notify-hook.py
  rollout-notify --file ~/.codex/sessions/2026/10/19/rollout-abc.jsonl
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from rollout_notify import config, observability
from rollout_notify.discovery import todays_rollout_file
from rollout_notify.models import WatchSettings
from rollout_notify.notifier import Notifier
from rollout_notify.watcher import RolloutWatcher, process_file_once

logger = logging.getLogger("rollout_notify")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Notify a hook when a rollout turn completes")
    parser.add_argument("--once", action="store_true", default=config.ONCE, help="Scan the file once and exit")
    parser.add_argument("--cwd", default=config.BASE_DIR or os.getcwd(), help="Base directory for the hook and audit log")
    parser.add_argument("--notify-script", default=config.NOTIFY_SCRIPT or None, help="Hook program to invoke")
    parser.add_argument("--poll-ms", type=int, default=config.POLL_MS, help="Streaming poll interval in milliseconds")
    parser.add_argument("--file", default=None, help="Watch this rollout file instead of today's session file")
    parser.add_argument("--sessions-dir", default=str(config.SESSIONS_DIR), help="Root of the dated session directories")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress at INFO level")
    return parser


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else getattr(logging, config.LOG_LEVEL, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def settings_from_args(args: argparse.Namespace) -> WatchSettings:
    return WatchSettings(
        once=args.once,
        cwd=Path(args.cwd).expanduser(),
        notify_script=Path(args.notify_script).expanduser() if args.notify_script else None,
        poll_ms=args.poll_ms,
        file=Path(args.file).expanduser() if args.file else None,
        sessions_dir=Path(args.sessions_dir).expanduser(),
    )


def _install_signal_handlers(watcher: RolloutWatcher) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, watcher.stop)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig!r} not supported on this platform")


async def stream(watcher: RolloutWatcher) -> bool:
    _install_signal_handlers(watcher)
    return await watcher.run()


def run(settings: WatchSettings, notifier: Notifier) -> int:
    rollout_file = settings.file or todays_rollout_file(settings.sessions_dir)
    if rollout_file is None:
        logger.info(f"No rollout file for today under {settings.sessions_dir}")
        return 0

    if settings.once:
        sent = process_file_once(rollout_file, notifier)
        logger.info(f"Sent {sent} notification(s) for {rollout_file}")
        return 0

    watcher = RolloutWatcher(rollout_file, notifier, poll_ms=settings.poll_ms)
    asyncio.run(stream(watcher))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    base_dir = Path(args.cwd).expanduser()

    try:
        settings = settings_from_args(args)
        notifier = Notifier(settings.cwd, settings.notify_script)
        observability.initialize()
        return run(settings, notifier)
    except Exception as exc:
        logger.exception("rollout watcher failed")
        Notifier(base_dir).record_failure(exc, Path(args.file) if args.file else None)
        return 1
    finally:
        observability.shutdown()


if __name__ == "__main__":
    sys.exit(main())
