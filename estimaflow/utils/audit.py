"""
Audit trail.

Each workflow action produces one :class:`AuditEvent`: it is always
written to the log as JSON and, when a connection is given, also stored
in ``audit_log`` so support can answer "who did what, when" per
estimation.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from estimaflow.logger import StructuredLogger

__all__ = [
    "AuditEvent",
    "DetailValue",
    "fetch_audit_trail",
    "log_audit_event",
    "persist_audit_event",
]

DetailValue = Union[str, int, float, bool, None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """One audited action on one entity."""

    timestamp: datetime = Field(default_factory=_now)
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> AuditEvent:
    """Emit an audit event to *logger* and, given *conn*, to ``audit_log``.

    A failed insert is logged as a warning and swallowed: the action being
    audited has already committed and must not be reported as failed.

    Args:
        action: ``"CREATE"``, ``"APPROVE"``, ``"UPLOAD_INVOICE"``,
            ``"UPDATE_ACTIVATION"``, ``"EMAIL_SENT"``...
        entity_type: ``"Estimation"`` or ``"Email"``.
        details: Flat key/value context such as previous and new status.
        conn: Connection to persist through.  The insert commits, so the
            caller must hold the write lock and must not be inside a batch.
    """
    event = AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info("AUDIT: %s", event.model_dump_json())

    if conn is not None:
        try:
            persist_audit_event(conn, event)
        except sqlite3.Error as exc:
            logger.warning("Audit event %s for %s not persisted: %s", action, entity_id, exc)
    return event


def persist_audit_event(conn: sqlite3.Connection, event: AuditEvent) -> None:
    conn.execute(
        """
        INSERT INTO audit_log (timestamp, action, entity_type, entity_id, user_id, details)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            event.timestamp.isoformat(),
            event.action,
            event.entity_type,
            event.entity_id,
            event.user_id,
            json.dumps(event.details, default=str),
        ),
    )
    conn.commit()


def fetch_audit_trail(conn: sqlite3.Connection, entity_id: str) -> list[AuditEvent]:
    """Stored events for *entity_id*, oldest first."""
    rows = conn.execute(
        """
        SELECT timestamp, action, entity_type, entity_id, user_id, details
        FROM audit_log
        WHERE entity_id = ?
        ORDER BY id
        """,
        (entity_id,),
    ).fetchall()
    return [
        AuditEvent(
            timestamp=datetime.fromisoformat(row[0]),
            action=row[1],
            entity_type=row[2],
            entity_id=row[3],
            user_id=row[4],
            details=json.loads(row[5]) if row[5] else {},
        )
        for row in rows
    ]
