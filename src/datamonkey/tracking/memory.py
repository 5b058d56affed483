"""Process-local job tracker used for tests and single-process runs."""

from __future__ import annotations

from dataclasses import replace

from datamonkey.tracking.base import JobRecord, RecordJobTracker


class InMemoryJobTracker(RecordJobTracker):
    """Keep job records in a dictionary guarded by the tracker lock."""

    backend = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, JobRecord] = {}

    def _load(self, job_id: str) -> JobRecord | None:
        record = self._records.get(job_id)
        return replace(record) if record is not None else None

    def _save(self, record: JobRecord) -> None:
        self._records[record.job_id] = replace(record)

    def _all(self) -> list[JobRecord]:
        return [replace(record) for record in self._records.values()]

    def _release(self) -> None:
        self._records.clear()


__all__ = ["InMemoryJobTracker"]
