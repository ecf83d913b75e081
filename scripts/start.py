#!/usr/bin/env python3
"""
Container entrypoint: run the release phase (migrations + seed), then exec gunicorn.

Usage:
    python scripts/start.py

Environment:
    PORT              bind port (default 8080)
    WEB_CONCURRENCY   gunicorn worker count (default 2)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _port() -> str:
    port = (os.environ.get("PORT") or "").strip()
    if not port:
        print("WARNING: PORT not set, using default 8080", flush=True)
        return "8080"
    try:
        value = int(port)
    except ValueError:
        value = 0
    if not 1 <= value <= 65535:
        print(f"ERROR: Invalid PORT value '{port}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)
    return port


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    port = _port()
    workers = (os.environ.get("WEB_CONCURRENCY") or "2").strip()

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== Starting gunicorn on 0.0.0.0:{port} ({workers} workers) ===", flush=True)
    # exec so gunicorn becomes PID 1 and receives signals directly
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", workers,
            "--timeout", "60",
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
