"""
EstimaFlow Engine Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema and runs the background workers (notification
delivery and cloud sync) until interrupted.  Every subsystem is wired
here; there are no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import signal
import sys
import threading
from pathlib import Path

from estimaflow.config import get_config
from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger, get_logger
from estimaflow.schema import initialize_schema
from estimaflow.services import create_services


def main() -> None:
    """Wire dependencies, start the workers and block until stopped."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting EstimaFlow...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (SQLite always, Supabase mirror optional)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.SQLITE_PATH),
        logger=get_logger("database"),
    )
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite schema (idempotent, migrates forward)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, get_logger("schema"))

    # ------------------------------------------------------------------
    # 4. Service container
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)
    notification_worker = services["notification_worker"]
    sync_worker = services["sync_worker"]

    # ------------------------------------------------------------------
    # 5. Run workers until SIGINT / SIGTERM
    # ------------------------------------------------------------------
    stop_requested = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_requested.set())

    notification_worker.start()
    sync_worker.start()
    logger.info(
        "EstimaFlow running (%d changes waiting for cloud sync).",
        db.get_pending_sync_count(),
    )

    try:
        while not stop_requested.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down.")
    finally:
        notification_worker.stop()
        sync_worker.stop()
        db.close()
        logger.info("EstimaFlow shut down.")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
