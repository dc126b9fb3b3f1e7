"""
Sync Worker Service.

Background daemon thread that replays pending ``sync_queue`` rows to the
Supabase mirror.  Repositories write the queue row in the same SQLite
transaction as the change itself, so a rolled-back approval never reaches
the cloud and a committed one always does, eventually.

Rows are replayed oldest first.  A failed row goes back to ``pending``
with its ``attempts`` counter bumped until ``_MAX_ATTEMPTS`` is reached,
then it is parked as ``permanently_failed`` for manual inspection.

Thread Safety
-------------
Queue writes acquire ``DatabaseManager.write_lock`` so they never land
inside another thread's ``batch_write`` transaction.
"""

from __future__ import annotations

import json
import threading
from typing import Optional

from estimaflow.config import AppConfig
from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger
from estimaflow.services.base_service import BaseService


class SyncWorkerService(BaseService):
    """Daemon thread that drains the local ``sync_queue`` to Supabase.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager``.  While it is offline the worker
        idles and the queue simply grows.
    config:
        Application configuration; ``SYNC_INTERVAL_S`` sets the poll period.
    logger:
        Structured JSON logger.
    """

    _MAX_INTERVAL_S: float = 300.0
    _BATCH_SIZE: int = 50
    _MAX_ATTEMPTS: int = 5

    _ALLOWED_TABLES: frozenset[str] = frozenset({
        "estimations",
        "approval_history",
        "projects",
    })

    def __init__(
        self,
        db: DatabaseManager,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db: DatabaseManager = db
        self._interval_s: float = config.SYNC_INTERVAL_S
        self._thread: Optional[threading.Thread] = None
        self._stop_event: threading.Event = threading.Event()
        self._consecutive_failures: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker on a daemon thread.  No-op when already running."""
        if self.is_running:
            self._logger.debug("Sync worker already running.")
            return

        self._stop_event.clear()
        self._consecutive_failures = 0
        self._thread = threading.Thread(
            target=self._run_loop, name="SyncWorker", daemon=True,
        )
        self._thread.start()
        self._logger.info("Sync worker started (interval %.1fs).", self._interval_s)

    def stop(self) -> None:
        """Signal the worker to stop and wait up to 10 s for it to exit."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=10.0)
        if self._thread.is_alive():
            self._logger.warning("Sync worker thread did not terminate within 10 s.")
        else:
            self._logger.info("Sync worker stopped.")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        try:
            while not self._stop_event.wait(timeout=self._next_interval()):
                if not self._db.is_online:
                    continue
                try:
                    self.drain()
                    self._consecutive_failures = 0
                except Exception:
                    self._consecutive_failures += 1
                    self._logger.warning("Sync cycle failed", exc_info=True)
        except Exception:
            self._logger.error(
                "Sync worker thread terminated due to unhandled exception.",
                exc_info=True,
            )

    def _next_interval(self) -> float:
        """Base interval, doubled per consecutive failed cycle (capped)."""
        if self._consecutive_failures == 0:
            return self._interval_s
        backoff = self._interval_s * (2 ** min(self._consecutive_failures, 6))
        return min(backoff, self._MAX_INTERVAL_S)

    # ------------------------------------------------------------------
    # Queue processing
    # ------------------------------------------------------------------

    def drain(self) -> int:
        """Replay one batch of pending rows.

        Returns
        -------
        int
            Number of rows synced in this cycle.
        """
        rows = self._db.sqlite.execute(
            """
            SELECT id, table_name, operation, entity_id, payload
            FROM sync_queue
            WHERE status = 'pending'
            ORDER BY id ASC
            LIMIT ?
            """,
            (self._BATCH_SIZE,),
        ).fetchall()

        synced = 0
        for row in rows:
            queue_id: int = row["id"]
            try:
                payload: dict[str, object] = json.loads(row["payload"])
                self._replay(row["table_name"], row["operation"], row["entity_id"], payload)
            except Exception as exc:
                self._logger.warning("Failed to sync queue row %d: %s", queue_id, exc)
                self._mark_failed(queue_id, str(exc))
                continue
            self._mark_synced(queue_id)
            synced += 1

        if rows:
            self._logger.info("Sync cycle complete: %d/%d rows synced.", synced, len(rows))
        return synced

    def _replay(
        self,
        table_name: str,
        operation: str,
        entity_id: str,
        payload: dict[str, object],
    ) -> None:
        """Replay a single queued operation to Supabase.

        Raises
        ------
        ValueError
            If the table or operation is not recognised.
        """
        if table_name not in self._ALLOWED_TABLES:
            raise ValueError(f"Disallowed sync target table: {table_name}")

        table = self._db.supabase.table(table_name)
        if operation == "insert":
            table.insert(payload).execute()
        elif operation == "update":
            table.update(payload).eq("id", entity_id).execute()
        elif operation == "upsert":
            table.upsert(payload).execute()
        else:
            raise ValueError(f"Unknown sync operation: {operation}")

    # ------------------------------------------------------------------
    # Mark helpers
    # ------------------------------------------------------------------

    def _mark_synced(self, queue_id: int) -> None:
        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                UPDATE sync_queue
                SET status = 'synced', attempted_at = CURRENT_TIMESTAMP,
                    attempts = attempts + 1
                WHERE id = ?
                """,
                (queue_id,),
            )
            self._db.sqlite.commit()

    def _mark_failed(self, queue_id: int, error_message: str) -> None:
        """Count a failed attempt; park the row after ``_MAX_ATTEMPTS``."""
        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                UPDATE sync_queue
                SET attempts = attempts + 1,
                    attempted_at = CURRENT_TIMESTAMP,
                    error_message = ?,
                    status = CASE WHEN attempts + 1 >= ?
                                  THEN 'permanently_failed' ELSE 'pending' END
                WHERE id = ?
                """,
                (error_message, self._MAX_ATTEMPTS, queue_id),
            )
            self._db.sqlite.commit()
