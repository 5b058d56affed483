"""SQLite backed job tracker."""

from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

import structlog

from datamonkey.errors import (
    NotFoundError,
    PermissionDeniedError,
    TrackerClosedError,
    TrackerError,
)
from datamonkey.jobs.status import JobStatus
from datamonkey.tracking.base import JobMetadata, JobRecord, normalise_filters
from datamonkey.tracking.schema import apply_migrations

log = structlog.get_logger(__name__)

_COLUMNS = (
    "job_id",
    "scheduler_job_id",
    "user_id",
    "alignment_id",
    "tree_id",
    "method_type",
    "status",
    "created_at",
    "updated_at",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM job_mappings"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _status_value(status: str | JobStatus) -> str:
    return status.value if isinstance(status, JobStatus) else str(status)


class SQLiteJobTracker:
    """Job tracker persisted in a single ``job_mappings`` table.

    One connection is shared by every thread; statements are serialised by a
    lock and each write is a single transaction, so a job's scheduler id,
    owner and metadata are never observed half written.
    """

    backend = "sqlite"

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self._connection: sqlite3.Connection | None = sqlite3.connect(
                self._path, check_same_thread=False, timeout=30.0
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA busy_timeout=5000")
            apply_migrations(self._connection)
        except sqlite3.Error as exc:
            raise TrackerError(
                f"Unable to open job tracker database '{self._path}': {exc}",
                context={"path": self._path},
            ) from exc
        log.debug("tracker.sqlite.opened", path=self._path)

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def _transaction(
        self, operation: str, job_id: str | None = None
    ) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._connection is None:
                raise TrackerClosedError("The sqlite job tracker has been closed.")
            try:
                with self._connection:
                    yield self._connection
            except sqlite3.Error as exc:
                log.error(
                    "tracker.sqlite.error",
                    operation=operation,
                    job_id=job_id,
                    error=str(exc),
                )
                raise TrackerError(
                    f"Job tracker {operation} failed: {exc}",
                    context={"operation": operation, "job_id": job_id},
                ) from exc

    def _fetch(self, connection: sqlite3.Connection, job_id: str) -> JobRecord:
        row = connection.execute(f"{_SELECT} WHERE job_id = ?", (job_id,)).fetchone()
        if row is None:
            raise NotFoundError(
                f"Job '{job_id}' was not found in the tracker.",
                context={"job_id": job_id},
            )
        return JobRecord.from_storage(dict(row))

    @staticmethod
    def _check_owner(record: JobRecord, user_id: str, action: str) -> None:
        if not record.owned_by(user_id):
            log.warning(
                "tracker.permission_denied",
                backend="sqlite",
                job_id=record.job_id,
                user_id=user_id,
                action=action,
            )
            raise PermissionDeniedError(
                f"User does not have permission to {action} this job.",
                context={"job_id": record.job_id, "user_id": user_id},
            )

    @staticmethod
    def _require_mapping(record: JobRecord) -> str:
        if not record.has_mapping:
            raise NotFoundError(
                f"Job '{record.job_id}' has no active scheduler mapping.",
                context={"job_id": record.job_id},
            )
        return record.scheduler_job_id

    # mapping -------------------------------------------------------------

    def store_job_mapping(self, job_id: str, scheduler_job_id: str) -> None:
        self.store_job_with_user(job_id, scheduler_job_id, "")

    def get_scheduler_job_id(self, job_id: str) -> str:
        with self._transaction("get_scheduler_job_id", job_id) as connection:
            record = self._fetch(connection, job_id)
        return self._require_mapping(record)

    def delete_job_mapping(self, job_id: str) -> None:
        with self._transaction("delete_job_mapping", job_id) as connection:
            cursor = connection.execute(
                "UPDATE job_mappings SET scheduler_job_id = '', updated_at = ? "
                "WHERE job_id = ?",
                (_timestamp(), job_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Job '{job_id}' was not found in the tracker.",
                    context={"job_id": job_id},
                )

    # ownership -----------------------------------------------------------

    def store_job_with_user(
        self, job_id: str, scheduler_job_id: str, user_id: str
    ) -> None:
        now = _timestamp()
        with self._transaction("store_job_with_user", job_id) as connection:
            connection.execute(
                """
                INSERT INTO job_mappings
                    (job_id, scheduler_job_id, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(job_id) DO UPDATE SET
                    scheduler_job_id = excluded.scheduler_job_id,
                    user_id = CASE
                        WHEN excluded.user_id != '' THEN excluded.user_id
                        ELSE job_mappings.user_id
                    END,
                    updated_at = excluded.updated_at
                """,
                (job_id, scheduler_job_id, user_id or "", now, now),
            )

    def get_job_owner(self, job_id: str) -> str:
        return self.get_job_record(job_id).user_id

    def get_scheduler_job_id_by_user(self, job_id: str, user_id: str) -> str:
        with self._transaction("get_scheduler_job_id_by_user", job_id) as connection:
            record = self._fetch(connection, job_id)
        self._check_owner(record, user_id, "access")
        return self._require_mapping(record)

    def delete_job_mapping_by_user(self, job_id: str, user_id: str) -> None:
        with self._transaction("delete_job_mapping_by_user", job_id) as connection:
            record = self._fetch(connection, job_id)
            self._check_owner(record, user_id, "delete")
            connection.execute(
                "UPDATE job_mappings SET scheduler_job_id = '', updated_at = ? "
                "WHERE job_id = ?",
                (_timestamp(), job_id),
            )

    def list_jobs_by_user(self, user_id: str) -> list[str]:
        if not user_id:
            return []
        return self.list_jobs_with_filters({"user_id": user_id})

    # metadata ------------------------------------------------------------

    def store_job_metadata(
        self,
        job_id: str,
        alignment_id: str,
        tree_id: str,
        method_type: str,
        status: str,
    ) -> None:
        now = _timestamp()
        with self._transaction("store_job_metadata", job_id) as connection:
            connection.execute(
                """
                INSERT INTO job_mappings
                    (job_id, alignment_id, tree_id, method_type, status,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(job_id) DO UPDATE SET
                    alignment_id = excluded.alignment_id,
                    tree_id = excluded.tree_id,
                    method_type = excluded.method_type,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (
                    job_id,
                    alignment_id,
                    tree_id,
                    method_type,
                    _status_value(status),
                    now,
                    now,
                ),
            )

    def update_job_status(self, job_id: str, status: str) -> None:
        with self._transaction("update_job_status", job_id) as connection:
            cursor = connection.execute(
                "UPDATE job_mappings SET status = ?, updated_at = ? WHERE job_id = ?",
                (_status_value(status), _timestamp(), job_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Job '{job_id}' was not found in the tracker.",
                    context={"job_id": job_id},
                )

    def update_job_status_by_user(self, job_id: str, user_id: str, status: str) -> None:
        with self._transaction("update_job_status_by_user", job_id) as connection:
            record = self._fetch(connection, job_id)
            self._check_owner(record, user_id, "update")
            connection.execute(
                "UPDATE job_mappings SET status = ?, updated_at = ? WHERE job_id = ?",
                (_status_value(status), _timestamp(), job_id),
            )

    def get_job_metadata(self, job_id: str) -> JobMetadata:
        return self.get_job_record(job_id).metadata

    def get_job_record(self, job_id: str) -> JobRecord:
        with self._transaction("get_job_record", job_id) as connection:
            return self._fetch(connection, job_id)

    def list_jobs_with_filters(self, filters: Mapping[str, Any]) -> list[str]:
        predicates, limit = normalise_filters(filters)
        # Column names come from the fixed FILTER_KEYS whitelist.
        clauses = [f"{column} = ?" for column in predicates]
        query = "SELECT job_id FROM job_mappings"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, rowid DESC"
        params: list[Any] = list(predicates.values())
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._transaction("list_jobs_with_filters") as connection:
            rows = connection.execute(query, params).fetchall()
        return [row["job_id"] for row in rows]

    def list_jobs_by_status(self, statuses: Iterable[str]) -> list[JobRecord]:
        wanted = sorted({_status_value(status) for status in statuses})
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        with self._transaction("list_jobs_by_status") as connection:
            rows = connection.execute(
                f"{_SELECT} WHERE status IN ({placeholders}) ORDER BY created_at",
                wanted,
            ).fetchall()
        return [JobRecord.from_storage(dict(row)) for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None
        log.debug("tracker.sqlite.closed", path=self._path)


__all__ = ["SQLiteJobTracker"]
