"""In-process scheduler used for local development and tests."""

from __future__ import annotations

import json
import threading
import uuid
from pathlib import Path

import structlog

from datamonkey.errors import CancellationError
from datamonkey.jobs.job import JobLike
from datamonkey.jobs.status import JobStatus
from datamonkey.scheduler.base import HealthReport
from datamonkey.tracking.base import JobTracker

log = structlog.get_logger(__name__)

_PROGRESSION = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.COMPLETE)


class MockScheduler:
    """Simulate a batch backend without running anything.

    Each poll advances a job one step from pending to running to complete.
    Jobs this instance never submitted (for example after a restart) report
    as complete, the same way a purged job with a clean exit code would.
    """

    name = "mock"

    def __init__(self, tracker: JobTracker, *, write_results: bool = False) -> None:
        self.tracker = tracker
        self.write_results = write_results
        self._polls: dict[str, int] = {}
        self._cancelled: set[str] = set()
        self._lock = threading.Lock()

    def submit(self, job: JobLike) -> None:
        job.validate()
        base = job.base_job
        mock_job_id = f"mock-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._polls[mock_job_id] = 0
        if base.user_id:
            self.tracker.store_job_with_user(base.id, mock_job_id, base.user_id)
        else:
            self.tracker.store_job_mapping(base.id, mock_job_id)
        base.touch()
        log.info("scheduler.mock.submit", job_id=base.id, mock_job_id=mock_job_id)

    def cancel(self, job: JobLike) -> None:
        base = job.base_job
        mock_job_id = self.tracker.get_scheduler_job_id(base.id)
        with self._lock:
            if mock_job_id not in self._polls:
                raise CancellationError(
                    f"Mock job '{mock_job_id}' is not active.",
                    context={"job_id": base.id, "mock_job_id": mock_job_id},
                )
            self._cancelled.add(mock_job_id)
        self.tracker.delete_job_mapping(base.id)
        log.info("scheduler.mock.cancel", job_id=base.id, mock_job_id=mock_job_id)

    def get_status(self, job: JobLike) -> JobStatus:
        base = job.base_job
        mock_job_id = self.tracker.get_scheduler_job_id(base.id)
        with self._lock:
            if mock_job_id in self._cancelled:
                status = JobStatus.CANCELLED
            elif mock_job_id not in self._polls:
                status = JobStatus.COMPLETE
            else:
                step = min(self._polls[mock_job_id], len(_PROGRESSION) - 1)
                self._polls[mock_job_id] += 1
                status = _PROGRESSION[step]

        if status.is_terminal:
            if status is JobStatus.COMPLETE and self.write_results and base.output_path:
                self._write_results(base.id, Path(base.output_path))
            self.tracker.update_job_status(base.id, status.value)
            self.tracker.delete_job_mapping(base.id)
        log.debug(
            "scheduler.mock.status",
            job_id=base.id,
            mock_job_id=mock_job_id,
            status=status.value,
        )
        return status

    def check_health(self) -> HealthReport:
        return HealthReport(True, "Mock scheduler is operational")

    @staticmethod
    def _write_results(job_id: str, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps({"job_id": job_id, "mock": True}, indent=2), encoding="utf-8"
        )


__all__ = ["MockScheduler"]
