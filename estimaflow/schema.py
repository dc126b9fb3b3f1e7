"""
Local SQLite schema.

All tables of the local store are declared here and created or upgraded
by :func:`initialize_schema`, which runs on every startup.  The single
row in ``schema_version`` records how far a database has been migrated:

- version 0 (new file): every statement in :data:`_TABLE_DEFINITIONS` runs;
- version N: only the :data:`_MIGRATIONS` steps above N run.

Either way the work and the version bump share one transaction, so a
failed upgrade leaves the database at N for the next startup to retry.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from estimaflow.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

# ---------------------------------------------------------------------------
# Schema version -- bump this whenever a migration is added.
# ---------------------------------------------------------------------------
CURRENT_SCHEMA_VERSION: int = 2

_NOTIFICATION_OUTBOX_DDL: str = """
    CREATE TABLE IF NOT EXISTS notification_outbox (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        estimation_id TEXT NOT NULL,
        new_status TEXT NOT NULL,
        recipient_role TEXT NOT NULL,
        actor_name TEXT,
        actor_role TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
               CHECK (status IN ('pending', 'sent', 'failed')),
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        sent_at TIMESTAMP
    )
"""

# ---------------------------------------------------------------------------
# DDL statements for every table in the local database.
# ---------------------------------------------------------------------------
_TABLE_DEFINITIONS: list[str] = [
    # -- single-row version tracker -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- outbound cloud sync buffer -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        table_name TEXT NOT NULL,
        operation TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        payload TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        attempted_at TIMESTAMP,
        error_message TEXT
    )
    """,
    # -- persistent structured audit trail ------------------------------------
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        details TEXT DEFAULT '{}',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- profiles (mirrors Supabase profiles) ---------------------------------
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        full_name TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- projects with default role activation --------------------------------
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        is_resident_active INTEGER NOT NULL DEFAULT 1,
        is_superintendent_active INTEGER NOT NULL DEFAULT 1,
        is_leader_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- project membership by role -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS project_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id TEXT NOT NULL REFERENCES projects(id),
        user_id TEXT NOT NULL REFERENCES profiles(id),
        role TEXT NOT NULL
             CHECK (role IN ('contratista', 'residente', 'superintendente',
                             'lider_proyecto', 'compras', 'finanzas',
                             'pagos', 'soporte_tecnico')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (project_id, user_id, role)
    )
    """,
    # -- estimations ----------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS estimations (
        id TEXT PRIMARY KEY,
        folio TEXT NOT NULL,
        project_id TEXT NOT NULL REFERENCES projects(id),
        project_number TEXT NOT NULL DEFAULT '',
        contractor_name TEXT NOT NULL DEFAULT '',
        estimation_text TEXT DEFAULT '',
        amount TEXT NOT NULL DEFAULT '0',
        pdf_url TEXT,
        status TEXT NOT NULL DEFAULT 'registered',
        is_resident_active INTEGER NOT NULL DEFAULT 1,
        is_superintendent_active INTEGER NOT NULL DEFAULT 1,
        is_leader_active INTEGER NOT NULL DEFAULT 1,
        resident_approved_at TEXT,
        resident_signed_by TEXT,
        superintendent_approved_at TEXT,
        superintendent_signed_by TEXT,
        leader_approved_at TEXT,
        leader_signed_by TEXT,
        compras_approved_at TEXT,
        finanzas_approved_at TEXT,
        paid_at TEXT,
        invoice_pdf_url TEXT,
        invoice_xml_url TEXT,
        invoice_uploaded_at TEXT,
        created_by TEXT,
        created_at TEXT,
        updated_at TEXT,
        version INTEGER NOT NULL DEFAULT 1
    )
    """,
    # -- append-only approval history -----------------------------------------
    """
    CREATE TABLE IF NOT EXISTS approval_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        estimation_id TEXT NOT NULL REFERENCES estimations(id),
        status TEXT NOT NULL,
        role TEXT NOT NULL,
        user_id TEXT,
        user_name TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_approval_history_estimation
        ON approval_history (estimation_id, timestamp)
    """,
    # -- notification outbox (drained by NotificationWorker) ------------------
    _NOTIFICATION_OUTBOX_DDL,
]


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_version`` table if it does not yet exist."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the current schema version, or ``0`` if unset."""
    cursor: sqlite3.Cursor = conn.execute(
        "SELECT version FROM schema_version WHERE id = 1"
    )
    row = cursor.fetchone()
    return row[0] if row is not None else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Record *version* in the tracker row.

    Does **not** commit.
    """
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


def _create_all_tables(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create every table of a brand-new database.

    Does **not** commit.
    """
    for ddl in _TABLE_DEFINITIONS:
        conn.execute(ddl)
    logger.info(
        "All %d schema statements applied successfully.", len(_TABLE_DEFINITIONS)
    )


def _migrate_v1_to_v2(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Add the ``notification_outbox`` table."""
    conn.execute(_NOTIFICATION_OUTBOX_DDL)
    logger.info("Migration v2: notification_outbox table created.")


_MIGRATIONS: dict[int, Callable[[sqlite3.Connection, StructuredLogger], None]] = {
    2: _migrate_v1_to_v2,
}


def _run_incremental_migrations(
    conn: sqlite3.Connection,
    logger: StructuredLogger,
    from_version: int,
    to_version: int,
) -> None:
    """Apply the migrations in ``(from_version, to_version]`` in order.

    Does **not** commit.
    """
    versions_to_apply: list[int] = sorted(
        v for v in _MIGRATIONS if from_version < v <= to_version
    )

    if not versions_to_apply:
        logger.info("No incremental migrations to apply.")
        return

    for version in versions_to_apply:
        logger.info("Running migration to version %d", version)
        _MIGRATIONS[version](conn, logger)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Bring *conn* up to :data:`CURRENT_SCHEMA_VERSION`.

    Safe to call on every startup; a database already at
    :data:`CURRENT_SCHEMA_VERSION` is left untouched.
    """
    _ensure_version_table(conn)
    current: int = _get_schema_version(conn)

    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Schema is up to date (version %d).", current)
        return

    logger.info(
        "Upgrading schema from version %d to %d", current, CURRENT_SCHEMA_VERSION
    )

    try:
        if current == 0:
            _create_all_tables(conn, logger)
        else:
            _run_incremental_migrations(
                conn, logger, current, CURRENT_SCHEMA_VERSION,
            )

        _set_schema_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(
            "Schema migration failed; rolled back to version %d.", current
        )
        raise

    logger.info("Schema initialised at version %d.", CURRENT_SCHEMA_VERSION)
