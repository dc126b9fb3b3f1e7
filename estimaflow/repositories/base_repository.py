"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference (SQLite + optional Supabase)
- Logger reference
- Commit helper that cooperates with ``DatabaseManager.batch_write``
- Sync queue management for the cloud mirror
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar, Union

from supabase import Client as SupabaseClient

from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger

T = TypeVar("T")
JsonValue = Union[str, int, float, bool, None]


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client (raises RuntimeError when offline)."""
        return self._db.supabase

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Returns the SQLite connection of the local store."""
        return self._db.sqlite

    def _execute_with_fallback(
        self,
        supabase_op: Callable[[], Optional[T]],
        sqlite_op: Callable[[], Optional[T]],
        default_factory: Callable[[], T],
        *,
        operation_name: str,
    ) -> T:
        """Execute a read with Supabase-first, SQLite-fallback semantics.

        Used for reference data (profiles, project membership) that other
        clients maintain in Supabase.  NOT for estimation state: the local
        store is authoritative for the approval engine.

        Execution order:
        1. When online, call ``supabase_op()``; a non-``None`` result wins.
        2. Call ``sqlite_op()``; a non-``None`` result wins.
        3. Return ``default_factory()``.
        """
        if self._db.is_online:
            try:
                result = supabase_op()
                if result is not None:
                    return result
            except Exception as exc:
                self._logger.warning(
                    "Supabase unavailable for %s: %s", operation_name, exc
                )

        try:
            result = sqlite_op()
            if result is not None:
                return result
        except sqlite3.Error as sqlite_exc:
            self._logger.error(
                "SQLite fallback also failed for %s: %s",
                operation_name,
                sqlite_exc,
            )

        return default_factory()

    def _commit(self) -> None:
        """Commit the current SQLite transaction unless a batch is active.

        Inside :meth:`DatabaseManager.batch_write` this is a no-op; the
        batch issues a single commit (or rollback) when it exits.
        """
        if not self._db.in_batch:
            self.sqlite.commit()

    def _queue_pending_sync(
        self,
        operation: str,
        entity_id: str,
        payload: dict[str, JsonValue],
        table_name: Optional[str] = None,
    ) -> None:
        """Record a change for the sync worker to replay to Supabase.

        Runs inside the caller's transaction, so a rolled-back write never
        leaves a queued sync row behind.

        Args:
            operation: ``insert``, ``update`` or ``upsert``.
            entity_id: The ID of the affected entity.
            payload: JSON-safe column values.
            table_name: Target table; defaults to :attr:`TABLE`.
        """
        self.sqlite.execute(
            """
            INSERT INTO sync_queue (table_name, operation, entity_id, payload)
            VALUES (?, ?, ?, ?)
            """,
            (table_name or self.TABLE, operation, entity_id, json.dumps(payload, default=str)),
        )
        self._logger.debug(
            "Queued pending sync: %s %s/%s", operation, table_name or self.TABLE, entity_id
        )

    # ------------------------------------------------------------------
    # Value conversion helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_db_value(value: object) -> JsonValue:
        """Convert a model value into something SQLite and JSON both accept."""
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, bool):
            return int(value)
        if value is None or isinstance(value, (str, int, float)):
            return value
        return str(value)

    @staticmethod
    def _parse_datetime(value: object) -> Optional[datetime]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))
