"""
Local store and cloud mirror connections.

The approval engine commits every transition to a local SQLite database
first.  That database is the source of truth for estimation state: the
version check, the status update and the history append of one approval
all happen in a single SQLite transaction taken under :attr:`write_lock`.

Supabase is a mirror for dashboards and other clients.  Repositories
queue each committed change in ``sync_queue`` and
:class:`~estimaflow.services.sync_worker.SyncWorkerService` replays the
queue whenever a client is available.  Without credentials the engine
runs purely locally.

No queries live here; see :mod:`estimaflow.repositories`.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from supabase import Client as SupabaseClient, create_client

from estimaflow.logger import StructuredLogger

_IN_MEMORY: str = ":memory:"
_BUSY_TIMEOUT_MS: int = 5_000


class DatabaseManager:
    """Owns the SQLite connection, the optional Supabase client and the write lock.

    Args:
        supabase_url: Project URL; empty to run offline.
        supabase_key: API key; empty to run offline.
        sqlite_path: Database file, or ``Path(":memory:")`` in tests.
        logger: Structured logger for connection events.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Path,
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._in_batch: bool = False
        self._supabase: Optional[SupabaseClient] = self._create_supabase(
            supabase_url, supabase_key
        )
        self._sqlite_conn: Optional[sqlite3.Connection] = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> SupabaseClient:
        """The Supabase client.

        Raises:
            RuntimeError: When running offline.
        """
        if self._supabase is None:
            raise RuntimeError("No Supabase client: the engine is running offline.")
        return self._supabase

    @property
    def is_online(self) -> bool:
        return self._supabase is not None

    @property
    def sqlite(self) -> sqlite3.Connection:
        """The local connection.

        Raises:
            RuntimeError: After :meth:`close`.
        """
        if self._sqlite_conn is None:
            raise RuntimeError("SQLite connection is closed.")
        return self._sqlite_conn

    # ------------------------------------------------------------------
    # Write coordination
    # ------------------------------------------------------------------

    @property
    def write_lock(self) -> threading.RLock:
        """Re-entrant lock every local write must hold.

        The connection is shared across the request thread and the worker
        threads; holding the lock keeps one thread's commit from landing in
        the middle of another thread's :meth:`batch_write`.  Estimation
        reads hold it too; uncommitted batch rows are visible on the shared
        connection otherwise.
        """
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        return self._in_batch

    @contextmanager
    def batch_write(self) -> Iterator[None]:
        """Group the writes of the block into one SQLite transaction.

        Holds :attr:`write_lock` throughout.  Repository ``_commit()``
        calls inside the block do nothing; the block commits once on exit
        or rolls back and re-raises.  Nested blocks join the outer one.
        """
        with self._write_lock:
            if self._in_batch:
                yield
                return

            self._in_batch = True
            try:
                yield
            except BaseException:
                self.sqlite.rollback()
                self._logger.debug("Batch rolled back.", exc_info=True)
                raise
            else:
                self.sqlite.commit()
            finally:
                self._in_batch = False

    def get_pending_sync_count(self) -> int:
        """Rows still waiting in ``sync_queue``; ``0`` if the table is missing."""
        with self._write_lock:
            try:
                row = self.sqlite.execute(
                    "SELECT COUNT(*) FROM sync_queue WHERE status = 'pending'"
                ).fetchone()
            except (sqlite3.Error, RuntimeError):
                self._logger.debug("Could not count pending sync rows.", exc_info=True)
                return 0
        return int(row[0]) if row else 0

    def close(self) -> None:
        """Close the local connection.  Idempotent."""
        with self._write_lock:
            if self._sqlite_conn is None:
                return
            self._sqlite_conn.close()
            self._sqlite_conn = None
        self._logger.info("SQLite connection closed.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _create_supabase(self, url: str, key: str) -> Optional[SupabaseClient]:
        if not (url and key):
            self._logger.warning("Supabase not configured; cloud mirror disabled.")
            return None
        try:
            client = create_client(url, key)
        except Exception as exc:
            self._logger.error(
                "Supabase client could not be created (%s); cloud mirror disabled.",
                exc,
                exc_info=True,
            )
            return None
        self._logger.info("Supabase client ready.")
        return client

    def _connect_sqlite(self, path: Path) -> sqlite3.Connection:
        """Open the local database.

        File databases use WAL so the dashboards' readers never block an
        approval.

        Raises:
            PermissionError: If the file or its directory is not writable.
        """
        in_memory = str(path) == _IN_MEMORY
        if not in_memory:
            path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
        except sqlite3.OperationalError as exc:
            message = f"Cannot open the local database at '{path}': {exc}"
            self._logger.error(message)
            raise PermissionError(message) from exc

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {_BUSY_TIMEOUT_MS}")
        if not in_memory:
            conn.execute("PRAGMA journal_mode = WAL")
        self._logger.info("SQLite database opened at %s", path)
        return conn
