"""Scheduler contract shared by every batch backend."""

from __future__ import annotations

from typing import NamedTuple, Protocol, runtime_checkable

from datamonkey.errors import DatamonkeyError
from datamonkey.jobs.job import JobLike
from datamonkey.jobs.status import JobStatus


class HealthReport(NamedTuple):
    """Result of a scheduler health check.

    ``detail`` always describes what was checked, even when ``error`` only
    carries a generic failure.
    """

    healthy: bool
    detail: str
    error: DatamonkeyError | None = None


@runtime_checkable
class Scheduler(Protocol):
    """Submit, cancel and poll jobs on a batch computing backend.

    Every operation may block on external I/O for as long as the backend
    takes to answer.
    """

    name: str

    def submit(self, job: JobLike) -> None:
        """Validate *job*, hand it to the backend and record the mapping."""

    def cancel(self, job: JobLike) -> None:
        """Cancel *job* and drop its mapping once the backend accepts."""

    def get_status(self, job: JobLike) -> JobStatus:
        """Poll the backend for the current status of *job*."""

    def check_health(self) -> HealthReport:
        """Report whether the backend is reachable and configured."""


__all__ = ["HealthReport", "Scheduler"]
