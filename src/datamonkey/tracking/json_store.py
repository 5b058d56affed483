"""JSON file backed job tracker."""

from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

import structlog

from datamonkey.errors import TrackerError
from datamonkey.tracking.base import JobRecord, RecordJobTracker

log = structlog.get_logger(__name__)


class JsonJobTracker(RecordJobTracker):
    """Persist every job record to a single JSON document.

    Nothing is cached between calls: reads load the document from disk and
    each change re-reads, merges and rewrites it while holding an exclusive
    ``flock`` on a sibling ``.lock`` file. Several trackers, in one process or
    many, can therefore share the same path. The document is replaced with
    :func:`os.replace` so readers see either the old or the new version.
    """

    backend = "json"

    def __init__(self, path: os.PathLike[str] | str) -> None:
        super().__init__()
        self._path = Path(path)
        self._lock_path = self._path.with_suffix(self._path.suffix + ".lock")

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _file_lock(self, exclusive: bool) -> Iterator[None]:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self._lock_path, "a+")
        except OSError as exc:
            raise TrackerError(
                f"Unable to open job tracker lock '{self._lock_path}': {exc}",
                context={"path": str(self._lock_path)},
            ) from exc
        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _load(self, job_id: str) -> JobRecord | None:
        for record in self._all():
            if record.job_id == job_id:
                return record
        return None

    def _all(self) -> list[JobRecord]:
        with self._file_lock(exclusive=False):
            return self._read()

    def _save(self, record: JobRecord) -> None:
        with self._file_lock(exclusive=True):
            records = {item.job_id: item for item in self._read()}
            records[record.job_id] = record
            try:
                self._write(records.values())
            except OSError as exc:
                log.error(
                    "tracker.json.write_failed", path=str(self._path), error=str(exc)
                )
                raise TrackerError(
                    f"Unable to write job tracker file '{self._path}': {exc}",
                    context={"path": str(self._path), "job_id": record.job_id},
                ) from exc

    def _read(self) -> list[JobRecord]:
        if not self._path.exists():
            return []
        try:
            raw_data = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            log.warning("tracker.json.read_failed", path=str(self._path), error=str(exc))
            return []
        try:
            payload = json.loads(raw_data or "[]")
        except json.JSONDecodeError as exc:
            log.warning(
                "tracker.json.decode_failed", path=str(self._path), error=str(exc)
            )
            return []
        if not isinstance(payload, list):
            log.warning("tracker.json.invalid_payload", path=str(self._path))
            return []

        records: list[JobRecord] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            try:
                records.append(JobRecord.from_storage(item))
            except ValueError as exc:
                log.warning("tracker.json.record_invalid", error=str(exc))
        log.debug("tracker.json.loaded", path=str(self._path), records=len(records))
        return records

    def _write(self, records: Iterable[JobRecord]) -> None:
        ordered = sorted(records, key=lambda record: record.created_at)
        serialised = json.dumps(
            [record.to_storage() for record in ordered], indent=2, sort_keys=True
        )

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp_path.write_text(serialised, encoding="utf-8")
            os.replace(tmp_path, self._path)
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["JsonJobTracker"]
