"""
Notification Outbox Repository.

Durable queue of "work is waiting" notifications.  The approval service
enqueues a row after its transition commits; the notification worker
drains pending rows and records the delivery outcome.
"""

from __future__ import annotations

from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole, EstimationStatus, OutboxStatus
from estimaflow.models.service_models import NotificationRequest
from estimaflow.repositories.base_repository import BaseRepository


class OutboxItem(NotificationRequest):
    """A :class:`NotificationRequest` as stored in the outbox."""

    id: int
    attempts: int = 0


class NotificationRepository(BaseRepository):
    """Data access layer for the ``notification_outbox`` table."""

    TABLE = "notification_outbox"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def enqueue(self, request: NotificationRequest) -> int:
        """Add a pending notification.  Returns the outbox row id."""
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"""
                INSERT INTO {self.TABLE}
                    (estimation_id, new_status, recipient_role, actor_name, actor_role)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    request.estimation_id,
                    str(request.new_status),
                    str(request.recipient_role),
                    request.actor_name,
                    str(request.actor_role) if request.actor_role else None,
                ),
            )
            self._commit()
        return int(cursor.lastrowid)

    def fetch_pending(self, limit: int = 50) -> list[OutboxItem]:
        """Oldest pending notifications first."""
        rows = self.sqlite.execute(
            f"""
            SELECT id, estimation_id, new_status, recipient_role,
                   actor_name, actor_role, attempts
            FROM {self.TABLE}
            WHERE status = ?
            ORDER BY id
            LIMIT ?
            """,
            (str(OutboxStatus.PENDING), limit),
        ).fetchall()
        return [
            OutboxItem(
                id=row["id"],
                estimation_id=row["estimation_id"],
                new_status=EstimationStatus(row["new_status"]),
                recipient_role=AppRole(row["recipient_role"]),
                actor_name=row["actor_name"],
                actor_role=AppRole(row["actor_role"]) if row["actor_role"] else None,
                attempts=row["attempts"],
            )
            for row in rows
        ]

    def mark_sent(self, item_id: int) -> None:
        with self._db.write_lock:
            self.sqlite.execute(
                f"""
                UPDATE {self.TABLE}
                SET status = ?, attempts = attempts + 1,
                    sent_at = CURRENT_TIMESTAMP, last_error = NULL
                WHERE id = ?
                """,
                (str(OutboxStatus.SENT), item_id),
            )
            self._commit()

    def record_failure(self, item_id: int, error_message: str, max_attempts: int) -> bool:
        """Count a failed delivery attempt.

        The row stays ``pending`` for another try until *max_attempts* is
        reached, after which it is parked as ``failed``.

        Returns:
            ``True`` if the row was parked as ``failed``.
        """
        with self._db.write_lock:
            self.sqlite.execute(
                f"""
                UPDATE {self.TABLE}
                SET attempts = attempts + 1,
                    last_error = ?,
                    status = CASE WHEN attempts + 1 >= ? THEN ? ELSE status END
                WHERE id = ?
                """,
                (error_message, max_attempts, str(OutboxStatus.FAILED), item_id),
            )
            self._commit()
            row = self.sqlite.execute(
                f"SELECT status FROM {self.TABLE} WHERE id = ?", (item_id,)
            ).fetchone()
        return row is not None and row["status"] == OutboxStatus.FAILED
