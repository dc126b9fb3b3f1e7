"""Tests for local schema creation and forward migration."""

from __future__ import annotations

import sqlite3

import pytest

from estimaflow.schema import CURRENT_SCHEMA_VERSION, _TABLE_DEFINITIONS, initialize_schema

EXPECTED_TABLES = {
    "schema_version",
    "sync_queue",
    "audit_log",
    "profiles",
    "projects",
    "project_members",
    "estimations",
    "approval_history",
    "notification_outbox",
}


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


def tables(conn):
    return {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        if not row[0].startswith("sqlite_")
    }


def version(conn):
    return conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()[0]


def test_fresh_database_gets_every_table(conn, logger):
    initialize_schema(conn, logger)
    assert tables(conn) == EXPECTED_TABLES
    assert version(conn) == CURRENT_SCHEMA_VERSION


def test_initialisation_is_idempotent(conn, logger):
    initialize_schema(conn, logger)
    conn.execute("INSERT INTO projects (id, name) VALUES ('p-1', 'Torre')")
    conn.commit()

    initialize_schema(conn, logger)

    assert conn.execute("SELECT name FROM projects").fetchall() == [("Torre",)]


def test_version_one_database_gains_the_outbox(conn, logger):
    for ddl in _TABLE_DEFINITIONS:
        if "notification_outbox" not in ddl:
            conn.execute(ddl)
    conn.execute("INSERT INTO schema_version (id, version) VALUES (1, 1)")
    conn.commit()
    assert "notification_outbox" not in tables(conn)

    initialize_schema(conn, logger)

    assert "notification_outbox" in tables(conn)
    assert version(conn) == 2


def test_history_rows_require_an_estimation(conn, logger):
    conn.execute("PRAGMA foreign_keys = ON")
    initialize_schema(conn, logger)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO approval_history (estimation_id, status, role, user_name, timestamp) "
            "VALUES ('e-missing', 'registered', 'contratista', 'Carlos', '2024-03-01T09:00:00+00:00')"
        )
