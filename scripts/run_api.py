#!/usr/bin/env python3
"""Serve the report API with an in-process notification worker.

Usage:
    python scripts/run_api.py --host 0.0.0.0 --port 3000
    python scripts/run_api.py --no-worker
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import argparse
import logging
import os
import sys
import threading
from pathlib import Path

import uvicorn

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from report_api.main import app, configure_logging, queue_backend
from report_api.worker_runtime import create_notification_worker_from_env

logger = logging.getLogger("report_api.run_api")


def _start_worker() -> threading.Thread:
    worker = create_notification_worker_from_env(queue_backend=queue_backend)
    thread = threading.Thread(target=worker.run_forever, name="notification-worker", daemon=True)
    thread.start()
    logger.info("notification worker started queue=%s", worker.queue_name)
    return thread


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the report management API.")
    parser.add_argument("--host", default=os.environ.get("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "3000")))
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Do not drain notification jobs in this process.",
    )
    args = parser.parse_args()

    configure_logging()
    if not args.no_worker:
        _start_worker()
    uvicorn.run(app, host=args.host, port=args.port, log_level=os.environ.get("LOG_LEVEL", "info").lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
