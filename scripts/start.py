#!/usr/bin/env python3
"""
Container entrypoint: release phase, then gunicorn.

The reminder scheduler lives inside the web process, so the worker layout follows
SCHEDULER_ENABLED:

- enabled: a single gthread worker, no --preload. The scheduler starts in that worker,
  so cron jobs fire once and /email-reminders/cron-status reads the live scheduler.
- disabled: WEB_CONCURRENCY sync workers (default 2) with --preload. Run the scheduler
  in one separate process (same image, SCHEDULER_ENABLED=1) if reminders are wanted.

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = "8080"
DEFAULT_WORKERS = 2
SCHEDULER_THREADS = 4


def _flag(env: dict[str, str], name: str) -> bool:
    return (env.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


def resolve_port(raw: str | None) -> str:
    port = (raw or "").strip() or DEFAULT_PORT
    try:
        value = int(port)
    except ValueError:
        raise ValueError(f"Invalid PORT value '{port}'. Must be integer 1-65535.") from None
    if value < 1 or value > 65535:
        raise ValueError(f"Invalid PORT value '{port}'. Must be integer 1-65535.")
    return port


def gunicorn_argv(port: str, env: dict[str, str]) -> list[str]:
    argv = ["gunicorn", "app.wsgi:app", "--bind", f"0.0.0.0:{port}", "--timeout", "60"]
    if _flag(env, "SCHEDULER_ENABLED"):
        # one process owns the in-memory scheduler and its status
        argv += ["--workers", "1", "--worker-class", "gthread", "--threads", str(SCHEDULER_THREADS)]
    else:
        workers = int((env.get("WEB_CONCURRENCY") or "").strip() or DEFAULT_WORKERS)
        argv += ["--workers", str(max(workers, 1)), "--preload"]
    return argv + ["--access-logfile", "-", "--error-logfile", "-"]


def main() -> None:
    try:
        port = resolve_port(os.environ.get("PORT"))
    except ValueError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)

    print("=== Running release phase ===", flush=True)
    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(port, dict(os.environ))
    mode = "scheduler enabled, single worker" if _flag(os.environ, "SCHEDULER_ENABLED") else "scheduler disabled"
    print(f"=== Starting gunicorn on 0.0.0.0:{port} ({mode}) ===", flush=True)
    # exec so gunicorn becomes PID 1 and receives container signals
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
