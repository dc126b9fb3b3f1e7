"""
Estimation Repository.

Handles estimation and approval-history data access on the local SQLite
store, which is the transactional source of truth for the approval
engine.  Every committed write is also queued in ``sync_queue`` for the
sync worker to replay to Supabase.

Concurrency: writes carry the ``version`` read at load time.  The UPDATE
only matches ``id AND version``; when nothing matches the whole batch is
rolled back (history row included) and :class:`ConcurrentModification`
is raised.

Reads take the same write lock, so they never observe another thread's
open batch.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole, parse_status
from estimaflow.models.estimation import ApprovalHistoryEntry, Estimation, RoleActivation
from estimaflow.models.workflow_errors import (
    ConcurrentModification,
    EstimationNotFound,
    UnknownStatus,
)
from estimaflow.repositories.base_repository import BaseRepository, JsonValue

HISTORY_TABLE: str = "approval_history"

# Columns rewritten by a transition.  Identity and creation fields never change.
_MUTABLE_COLUMNS: tuple[str, ...] = (
    "status",
    "is_resident_active",
    "is_superintendent_active",
    "is_leader_active",
    "resident_approved_at",
    "resident_signed_by",
    "superintendent_approved_at",
    "superintendent_signed_by",
    "leader_approved_at",
    "leader_signed_by",
    "compras_approved_at",
    "finanzas_approved_at",
    "paid_at",
    "invoice_pdf_url",
    "invoice_xml_url",
    "invoice_uploaded_at",
    "updated_at",
)

_DATETIME_FIELDS: tuple[str, ...] = (
    "resident_approved_at",
    "superintendent_approved_at",
    "leader_approved_at",
    "compras_approved_at",
    "finanzas_approved_at",
    "paid_at",
    "invoice_uploaded_at",
    "created_at",
    "updated_at",
)


class EstimationRepository(BaseRepository):
    """Data access layer for Estimation entities and their approval history.

    There is no ``delete()``: estimations only move forward, and the
    history table is append-only.
    """

    TABLE = "estimations"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, estimation_id: str, with_history: bool = True) -> Estimation:
        """Load an estimation fresh from the local store.

        Raises:
            EstimationNotFound: If no row has *estimation_id*.
            UnknownStatus: If the stored status is corrupt.
        """
        with self._db.write_lock:
            row = self.sqlite.execute(
                f"SELECT * FROM {self.TABLE} WHERE id = ?", (estimation_id,)
            ).fetchone()
            if row is None:
                raise EstimationNotFound(
                    f"Estimation {estimation_id} does not exist.", estimation_id
                )
            estimation = self._parse_row(dict(row))
            if with_history:
                estimation.history = self.list_history(estimation_id)
        return estimation

    def list_history(self, estimation_id: str) -> list[ApprovalHistoryEntry]:
        """Return the approval history of an estimation, oldest first."""
        with self._db.write_lock:
            rows = self.sqlite.execute(
                f"""
                SELECT status, role, user_id, user_name, timestamp
                FROM {HISTORY_TABLE}
                WHERE estimation_id = ?
                ORDER BY timestamp ASC, id ASC
                """,
                (estimation_id,),
            ).fetchall()
        return [
            ApprovalHistoryEntry(
                status=parse_status(row["status"]),
                role=AppRole(row["role"]),
                user_id=row["user_id"],
                user_name=row["user_name"],
                timestamp=self._parse_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    def list_by_project(self, project_id: str, with_history: bool = False) -> list[Estimation]:
        """Return every estimation of a project, newest first."""
        with self._db.write_lock:
            rows = self.sqlite.execute(
                f"SELECT * FROM {self.TABLE} WHERE project_id = ? ORDER BY created_at DESC, id",
                (project_id,),
            ).fetchall()
            estimations = [self._parse_row(dict(row)) for row in rows]
            if with_history:
                for estimation in estimations:
                    estimation.history = self.list_history(estimation.id)
        return estimations

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, estimation: Estimation, history_entry: ApprovalHistoryEntry) -> Estimation:
        """Insert a new estimation together with its first history entry."""
        row = self._to_row(estimation)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        with self._db.batch_write():
            self.sqlite.execute(
                f"INSERT INTO {self.TABLE} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            self._queue_pending_sync("insert", estimation.id, row)
            self._insert_history(estimation.id, history_entry)
            self._commit()

        estimation.history = [history_entry]
        self._logger.info(
            "Estimation %s (folio %s) created at status %s",
            estimation.id, estimation.folio, estimation.status,
        )
        return estimation

    def save_transition(
        self,
        estimation: Estimation,
        expected_version: int,
        history_entry: ApprovalHistoryEntry,
    ) -> Estimation:
        """Persist a status transition and its history entry atomically.

        Args:
            estimation: The estimation with the new status, timestamps and
                inherited signatures already applied.
            expected_version: The version read when the estimation was
                loaded.
            history_entry: The single entry recording this transition.

        Returns:
            *estimation* with ``version`` bumped and the entry appended.

        Raises:
            ConcurrentModification: If another writer committed first.
            EstimationNotFound: If the row disappeared.
        """
        row = self._to_row(estimation)
        new_version = expected_version + 1

        with self._db.batch_write():
            self._versioned_update(
                estimation.id,
                {column: row[column] for column in _MUTABLE_COLUMNS},
                expected_version,
            )
            row["version"] = new_version
            self._queue_pending_sync("upsert", estimation.id, row)
            self._insert_history(estimation.id, history_entry)
            self._commit()

        estimation.version = new_version
        estimation.history = [*estimation.history, history_entry]
        return estimation

    def update_activation(
        self,
        estimation_id: str,
        activation: RoleActivation,
        expected_version: int,
        updated_at: datetime,
    ) -> int:
        """Replace the role activation snapshot of an estimation.

        Returns:
            The new version.

        Raises:
            ConcurrentModification: If another writer committed first.
            EstimationNotFound: If the row does not exist.
        """
        values: dict[str, JsonValue] = {
            "is_resident_active": int(activation.resident_active),
            "is_superintendent_active": int(activation.superintendent_active),
            "is_leader_active": int(activation.leader_active),
            "updated_at": updated_at.isoformat(),
        }
        new_version = expected_version + 1

        with self._db.batch_write():
            self._versioned_update(estimation_id, values, expected_version)
            self._queue_pending_sync(
                "update", estimation_id, {"id": estimation_id, **values, "version": new_version}
            )
            self._commit()

        return new_version

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _versioned_update(
        self,
        estimation_id: str,
        values: dict[str, JsonValue],
        expected_version: int,
    ) -> None:
        """UPDATE guarded by ``version``; must run inside ``batch_write``."""
        assignments = ", ".join(f"{column} = ?" for column in values)
        cursor = self.sqlite.execute(
            f"""
            UPDATE {self.TABLE}
            SET {assignments}, version = version + 1
            WHERE id = ? AND version = ?
            """,
            (*values.values(), estimation_id, expected_version),
        )
        if cursor.rowcount == 1:
            return

        exists = self.sqlite.execute(
            f"SELECT 1 FROM {self.TABLE} WHERE id = ?", (estimation_id,)
        ).fetchone()
        if exists is None:
            raise EstimationNotFound(
                f"Estimation {estimation_id} does not exist.", estimation_id
            )
        self._logger.warning(
            "Version conflict on estimation %s (expected version %d)",
            estimation_id, expected_version,
        )
        raise ConcurrentModification(
            f"Estimation {estimation_id} changed since version {expected_version}.",
            estimation_id,
        )

    def _insert_history(self, estimation_id: str, entry: ApprovalHistoryEntry) -> None:
        payload: dict[str, JsonValue] = {
            "estimation_id": estimation_id,
            "status": str(entry.status),
            "role": str(entry.role),
            "user_id": entry.user_id,
            "user_name": entry.user_name,
            "timestamp": entry.timestamp.isoformat(),
        }
        cursor = self.sqlite.execute(
            f"""
            INSERT INTO {HISTORY_TABLE} (estimation_id, status, role, user_id, user_name, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            tuple(payload.values()),
        )
        self._queue_pending_sync(
            "insert", str(cursor.lastrowid), payload, table_name=HISTORY_TABLE
        )

    def _to_row(self, estimation: Estimation) -> dict[str, JsonValue]:
        """Flatten an estimation into column values."""
        data = estimation.model_dump(exclude={"history", "activation"})
        row: dict[str, JsonValue] = {
            key: self._to_db_value(value) for key, value in data.items()
        }
        row["status"] = str(estimation.status)
        row["is_resident_active"] = int(estimation.activation.resident_active)
        row["is_superintendent_active"] = int(estimation.activation.superintendent_active)
        row["is_leader_active"] = int(estimation.activation.leader_active)
        return row

    def _parse_row(self, row: dict[str, object]) -> Estimation:
        """Build an :class:`Estimation` from a SQLite row.

        Raises:
            UnknownStatus: If ``status`` is not a workflow value.
        """
        estimation_id = str(row["id"])
        try:
            status = parse_status(row["status"])
        except UnknownStatus as exc:
            exc.estimation_id = estimation_id
            raise

        activation = RoleActivation(
            resident_active=bool(row.pop("is_resident_active")),
            superintendent_active=bool(row.pop("is_superintendent_active")),
            leader_active=bool(row.pop("is_leader_active")),
        )
        for field in _DATETIME_FIELDS:
            row[field] = self._parse_datetime(row.get(field))
        row["amount"] = Decimal(str(row.get("amount") or "0"))
        row["status"] = status
        return Estimation(**row, activation=activation)
