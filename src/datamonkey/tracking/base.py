"""Job tracker contract and the record it persists."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, NamedTuple, Protocol, runtime_checkable

import structlog

from datamonkey.errors import (
    NotFoundError,
    PermissionDeniedError,
    TrackerClosedError,
    ValidationError,
)
from datamonkey.jobs.status import JobStatus

log = structlog.get_logger(__name__)

#: Keys accepted by :meth:`JobTracker.list_jobs_with_filters`.
FILTER_KEYS: tuple[str, ...] = (
    "user_id",
    "alignment_id",
    "tree_id",
    "method_type",
    "status",
    "limit",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        value = value.replace("Z", "+00:00") if value.endswith("Z") else value
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()


class JobMetadata(NamedTuple):
    """Descriptive record kept for a job after its mapping is gone."""

    alignment_id: str
    tree_id: str
    method_type: str
    status: str


@dataclass(slots=True)
class JobRecord:
    """Everything the tracker knows about one internal job id.

    An empty ``scheduler_job_id`` means the mapping was deleted; the
    descriptive fields remain available.
    """

    job_id: str
    scheduler_job_id: str = ""
    user_id: str = ""
    alignment_id: str = ""
    tree_id: str = ""
    method_type: str = ""
    status: str = JobStatus.PENDING.value
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def has_mapping(self) -> bool:
        return bool(self.scheduler_job_id)

    @property
    def metadata(self) -> JobMetadata:
        return JobMetadata(
            alignment_id=self.alignment_id,
            tree_id=self.tree_id,
            method_type=self.method_type,
            status=self.status,
        )

    def owned_by(self, user_id: str) -> bool:
        """Return ``True`` when *user_id* may act on this job.

        Jobs stored without an owner are public.
        """

        return not self.user_id or self.user_id == user_id

    def to_storage(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "scheduler_job_id": self.scheduler_job_id,
            "user_id": self.user_id,
            "alignment_id": self.alignment_id,
            "tree_id": self.tree_id,
            "method_type": self.method_type,
            "status": self.status,
            "created_at": self.created_at.astimezone(timezone.utc).isoformat(),
            "updated_at": self.updated_at.astimezone(timezone.utc).isoformat(),
        }

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "JobRecord":
        job_id = payload.get("job_id")
        if not isinstance(job_id, str) or not job_id:
            raise ValueError("job_id is required")
        return cls(
            job_id=job_id,
            scheduler_job_id=str(payload.get("scheduler_job_id") or ""),
            user_id=str(payload.get("user_id") or ""),
            alignment_id=str(payload.get("alignment_id") or ""),
            tree_id=str(payload.get("tree_id") or ""),
            method_type=str(payload.get("method_type") or ""),
            status=str(payload.get("status") or JobStatus.PENDING.value),
            created_at=_parse_datetime(payload.get("created_at")),
            updated_at=_parse_datetime(payload.get("updated_at")),
        )


@runtime_checkable
class JobTracker(Protocol):
    """Durable mapping between internal job ids and scheduler job ids."""

    def store_job_mapping(self, job_id: str, scheduler_job_id: str) -> None: ...

    def get_scheduler_job_id(self, job_id: str) -> str: ...

    def delete_job_mapping(self, job_id: str) -> None: ...

    def store_job_with_user(
        self, job_id: str, scheduler_job_id: str, user_id: str
    ) -> None: ...

    def get_job_owner(self, job_id: str) -> str: ...

    def get_scheduler_job_id_by_user(self, job_id: str, user_id: str) -> str: ...

    def delete_job_mapping_by_user(self, job_id: str, user_id: str) -> None: ...

    def list_jobs_by_user(self, user_id: str) -> list[str]: ...

    def store_job_metadata(
        self,
        job_id: str,
        alignment_id: str,
        tree_id: str,
        method_type: str,
        status: str,
    ) -> None: ...

    def update_job_status(self, job_id: str, status: str) -> None: ...

    def update_job_status_by_user(
        self, job_id: str, user_id: str, status: str
    ) -> None: ...

    def get_job_metadata(self, job_id: str) -> JobMetadata: ...

    def get_job_record(self, job_id: str) -> JobRecord: ...

    def list_jobs_with_filters(self, filters: Mapping[str, Any]) -> list[str]: ...

    def list_jobs_by_status(self, statuses: Iterable[str]) -> list[JobRecord]: ...

    def close(self) -> None: ...


def normalise_filters(filters: Mapping[str, Any]) -> tuple[dict[str, str], int | None]:
    """Split *filters* into equality predicates and an optional limit.

    Empty values are ignored. Unknown keys raise :class:`ValidationError`.
    """

    unknown = sorted(set(filters) - set(FILTER_KEYS))
    if unknown:
        raise ValidationError(
            f"Unsupported job filter(s): {', '.join(unknown)}.",
            context={"filters": unknown},
        )
    predicates: dict[str, str] = {}
    for key in FILTER_KEYS[:-1]:
        value = filters.get(key)
        if value is None or value == "":
            continue
        predicates[key] = str(value.value if isinstance(value, JobStatus) else value)

    limit = filters.get("limit")
    if limit is None:
        return predicates, None
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError("Job filter 'limit' must be an integer.")
    return predicates, limit if limit > 0 else None


def _status_value(status: str | JobStatus) -> str:
    return status.value if isinstance(status, JobStatus) else str(status)


class RecordJobTracker(ABC):
    """Tracker built from whole-record loads and saves.

    Subclasses provide storage for :class:`JobRecord` values; every operation
    runs under one lock so a record is always written as a unit.
    """

    backend = "records"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._closed = False

    # storage primitives -------------------------------------------------

    @abstractmethod
    def _load(self, job_id: str) -> JobRecord | None: ...

    @abstractmethod
    def _save(self, record: JobRecord) -> None: ...

    @abstractmethod
    def _all(self) -> list[JobRecord]: ...

    def _release(self) -> None:
        """Hook for subclasses to free resources on close."""

    # helpers -------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise TrackerClosedError(
                f"The {self.backend} job tracker has been closed."
            )

    def _require(self, job_id: str) -> JobRecord:
        self._ensure_open()
        record = self._load(job_id)
        if record is None:
            raise NotFoundError(
                f"Job '{job_id}' was not found in the tracker.",
                context={"job_id": job_id},
            )
        return record

    def _require_owner(self, record: JobRecord, user_id: str, action: str) -> None:
        if not record.owned_by(user_id):
            log.warning(
                "tracker.permission_denied",
                backend=self.backend,
                job_id=record.job_id,
                user_id=user_id,
                action=action,
            )
            raise PermissionDeniedError(
                f"User does not have permission to {action} this job.",
                context={"job_id": record.job_id, "user_id": user_id},
            )

    # mapping -------------------------------------------------------------

    def store_job_mapping(self, job_id: str, scheduler_job_id: str) -> None:
        with self._lock:
            self._ensure_open()
            record = self._load(job_id) or JobRecord(job_id=job_id)
            self._save(
                replace(record, scheduler_job_id=scheduler_job_id, updated_at=_utcnow())
            )

    def get_scheduler_job_id(self, job_id: str) -> str:
        with self._lock:
            record = self._require(job_id)
        if not record.has_mapping:
            raise NotFoundError(
                f"Job '{job_id}' has no active scheduler mapping.",
                context={"job_id": job_id},
            )
        return record.scheduler_job_id

    def delete_job_mapping(self, job_id: str) -> None:
        with self._lock:
            record = self._require(job_id)
            if record.has_mapping:
                self._save(replace(record, scheduler_job_id="", updated_at=_utcnow()))

    # ownership -----------------------------------------------------------

    def store_job_with_user(
        self, job_id: str, scheduler_job_id: str, user_id: str
    ) -> None:
        with self._lock:
            self._ensure_open()
            record = self._load(job_id) or JobRecord(job_id=job_id)
            changes: dict[str, Any] = {
                "scheduler_job_id": scheduler_job_id,
                "updated_at": _utcnow(),
            }
            if user_id:
                changes["user_id"] = user_id
            self._save(replace(record, **changes))

    def get_job_owner(self, job_id: str) -> str:
        with self._lock:
            return self._require(job_id).user_id

    def get_scheduler_job_id_by_user(self, job_id: str, user_id: str) -> str:
        with self._lock:
            record = self._require(job_id)
        self._require_owner(record, user_id, "access")
        return self.get_scheduler_job_id(job_id)

    def delete_job_mapping_by_user(self, job_id: str, user_id: str) -> None:
        with self._lock:
            record = self._require(job_id)
            self._require_owner(record, user_id, "delete")
            self.delete_job_mapping(job_id)

    def list_jobs_by_user(self, user_id: str) -> list[str]:
        return self.list_jobs_with_filters({"user_id": user_id}) if user_id else []

    # metadata ------------------------------------------------------------

    def store_job_metadata(
        self,
        job_id: str,
        alignment_id: str,
        tree_id: str,
        method_type: str,
        status: str,
    ) -> None:
        with self._lock:
            self._ensure_open()
            record = self._load(job_id) or JobRecord(job_id=job_id)
            self._save(
                replace(
                    record,
                    alignment_id=alignment_id,
                    tree_id=tree_id,
                    method_type=method_type,
                    status=_status_value(status),
                    updated_at=_utcnow(),
                )
            )

    def update_job_status(self, job_id: str, status: str) -> None:
        with self._lock:
            record = self._require(job_id)
            self._save(
                replace(record, status=_status_value(status), updated_at=_utcnow())
            )

    def update_job_status_by_user(self, job_id: str, user_id: str, status: str) -> None:
        with self._lock:
            record = self._require(job_id)
            self._require_owner(record, user_id, "update")
            self.update_job_status(job_id, status)

    def get_job_metadata(self, job_id: str) -> JobMetadata:
        return self.get_job_record(job_id).metadata

    def get_job_record(self, job_id: str) -> JobRecord:
        with self._lock:
            return self._require(job_id)

    def list_jobs_with_filters(self, filters: Mapping[str, Any]) -> list[str]:
        predicates, limit = normalise_filters(filters)
        with self._lock:
            self._ensure_open()
            records = self._all()
        # Ties on created_at fall back to insertion order, newest first.
        ordered = [
            (record.created_at, position, record)
            for position, record in enumerate(records)
            if all(getattr(record, key) == value for key, value in predicates.items())
        ]
        ordered.sort(key=lambda item: item[:2], reverse=True)
        matches = [record for _, _, record in ordered]
        if limit is not None:
            matches = matches[:limit]
        return [record.job_id for record in matches]

    def list_jobs_by_status(self, statuses: Iterable[str]) -> list[JobRecord]:
        wanted = {_status_value(status) for status in statuses}
        with self._lock:
            self._ensure_open()
            records = self._all()
        return sorted(
            (record for record in records if record.status in wanted),
            key=lambda record: record.created_at,
        )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._release()
        log.debug("tracker.closed", backend=self.backend)


__all__ = [
    "FILTER_KEYS",
    "JobMetadata",
    "JobRecord",
    "JobTracker",
    "RecordJobTracker",
    "normalise_filters",
]
