"""Tests for the SQLite tracker migrations."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from datamonkey.tracking.schema import (
    MIGRATIONS,
    apply_migrations,
    get_applied_migrations,
    latest_migration_id,
)


def _indexes(connection: sqlite3.Connection) -> set[str]:
    rows = connection.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'job_mappings'"
    ).fetchall()
    return {row[0] for row in rows}


def test_apply_migrations_creates_table_and_indexes(tmp_path: Path) -> None:
    connection = sqlite3.connect(tmp_path / "jobs.db")
    try:
        applied = apply_migrations(connection)

        assert applied == [migration.identifier for migration in MIGRATIONS]
        assert {
            "idx_job_mappings_user_id",
            "idx_job_mappings_status",
            "idx_job_mappings_method_type",
            "idx_job_mappings_created_at",
        } <= _indexes(connection)
        columns = {
            row[1] for row in connection.execute("PRAGMA table_info(job_mappings)")
        }
        assert {"job_id", "scheduler_job_id", "user_id", "status"} <= columns
    finally:
        connection.close()


def test_migrations_are_idempotent(tmp_path: Path) -> None:
    connection = sqlite3.connect(tmp_path / "jobs.db")
    try:
        apply_migrations(connection)

        assert apply_migrations(connection) == []
        assert get_applied_migrations(connection)[-1] == latest_migration_id()
    finally:
        connection.close()
