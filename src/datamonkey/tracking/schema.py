"""SQLite schema and migration helpers for the job tracker."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Sequence

import structlog

log = structlog.get_logger(__name__)

_MIGRATION_TABLE = "tracker_schema_migrations"


@dataclass(frozen=True)
class Migration:
    """Represents a database migration step."""

    identifier: str
    description: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        identifier="0001_job_mappings",
        description="Create the job mapping table with ownership and metadata.",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS job_mappings (
                job_id TEXT PRIMARY KEY,
                scheduler_job_id TEXT NOT NULL DEFAULT '',
                user_id TEXT NOT NULL DEFAULT '',
                alignment_id TEXT NOT NULL DEFAULT '',
                tree_id TEXT NOT NULL DEFAULT '',
                method_type TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_job_mappings_user_id
                ON job_mappings (user_id)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_job_mappings_status
                ON job_mappings (status)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_job_mappings_method_type
                ON job_mappings (method_type)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_job_mappings_created_at
                ON job_mappings (created_at)
            """,
        ),
    ),
    Migration(
        identifier="0002_dataset_indexes",
        description="Index job mappings by alignment and tree dataset.",
        statements=(
            """
            CREATE INDEX IF NOT EXISTS idx_job_mappings_alignment_id
                ON job_mappings (alignment_id)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_job_mappings_tree_id
                ON job_mappings (tree_id)
            """,
        ),
    ),
)


def _ensure_migrations_table(connection: sqlite3.Connection) -> None:
    """Create the schema migrations bookkeeping table when missing."""

    connection.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {_MIGRATION_TABLE} (
            identifier TEXT PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def get_applied_migrations(connection: sqlite3.Connection) -> list[str]:
    """Return the migration identifiers already applied to *connection*."""

    _ensure_migrations_table(connection)
    cursor = connection.execute(
        f"SELECT identifier FROM {_MIGRATION_TABLE} ORDER BY applied_at, identifier"
    )
    return [row[0] for row in cursor.fetchall()]


def apply_migrations(
    connection: sqlite3.Connection,
    *,
    migrations: Sequence[Migration] | None = None,
) -> list[str]:
    """Apply outstanding migrations to *connection* and return applied IDs."""

    migrations = migrations or MIGRATIONS
    applied: list[str] = []
    with connection:
        _ensure_migrations_table(connection)
        completed = set(get_applied_migrations(connection))
        for migration in migrations:
            if migration.identifier in completed:
                continue
            for statement in migration.statements:
                connection.execute(statement)
            connection.execute(
                f"INSERT INTO {_MIGRATION_TABLE} (identifier, description) VALUES (?, ?)",
                (migration.identifier, migration.description),
            )
            applied.append(migration.identifier)
    if applied:
        log.info("tracker.sqlite.migrated", migrations=applied)
    return applied


def latest_migration_id(migrations: Sequence[Migration] | None = None) -> str:
    """Return the identifier of the most recent migration."""

    migrations = migrations or MIGRATIONS
    return migrations[-1].identifier


__all__ = [
    "MIGRATIONS",
    "Migration",
    "apply_migrations",
    "get_applied_migrations",
    "latest_migration_id",
]
