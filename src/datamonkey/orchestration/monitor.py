"""Background refresh of the last-known status of active jobs."""

from __future__ import annotations

import threading
from typing import Callable

import structlog

from datamonkey.analysis.methods import ComputeMethod
from datamonkey.errors import DatamonkeyError
from datamonkey.jobs.job import BaseJob
from datamonkey.jobs.status import ACTIVE_STATUSES
from datamonkey.scheduler.base import Scheduler
from datamonkey.tracking.base import JobTracker

log = structlog.get_logger(__name__)

MethodFactory = Callable[[str], ComputeMethod]


class JobStatusMonitor:
    """Poll every pending or running job and record status changes.

    The scheduler finalises terminal jobs itself; the monitor only keeps the
    tracker's last-known status current for jobs nobody is asking about.
    """

    def __init__(
        self,
        tracker: JobTracker,
        scheduler: Scheduler,
        method_factory: MethodFactory,
        interval: float = 30.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.tracker = tracker
        self.scheduler = scheduler
        self.method_factory = method_factory
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run, name="datamonkey-job-monitor", daemon=True
            )
            self._thread.start()
        log.info("monitor.started", interval=self.interval)

    def stop(self, timeout: float | None = None) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
        log.info("monitor.stopped")

    def wait(self, timeout: float | None = None) -> None:
        """Block until the sweep thread exits or *timeout* elapses."""

        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except DatamonkeyError as exc:
                log.error("monitor.sweep_failed", error=str(exc))
            self._stop.wait(self.interval)

    def run_once(self) -> int:
        """Check every active job once and return how many changed status."""

        records = self.tracker.list_jobs_by_status(
            status.value for status in ACTIVE_STATUSES
        )
        if records:
            log.debug("monitor.sweep", active=len(records))

        updated = 0
        for record in records:
            try:
                method = self.method_factory(record.method_type)
            except DatamonkeyError as exc:
                log.warning(
                    "monitor.method_unavailable",
                    job_id=record.job_id,
                    method=record.method_type,
                    error=str(exc),
                )
                continue

            job = BaseJob(
                id=record.job_id,
                alignment_id=record.alignment_id,
                tree_id=record.tree_id,
                scheduler=self.scheduler,
                method=method,
                output_path=str(method.output_path(record.job_id)),
                log_path=str(method.log_path(record.job_id)),
                user_id=record.user_id,
            )
            try:
                status = self.scheduler.get_status(job)
            except DatamonkeyError as exc:
                log.warning("monitor.status_failed", job_id=record.job_id, error=str(exc))
                continue

            if status.value == record.status:
                continue
            log.info(
                "monitor.status_changed",
                job_id=record.job_id,
                previous=record.status,
                status=status.value,
            )
            try:
                self.tracker.update_job_status(record.job_id, status.value)
            except DatamonkeyError as exc:
                log.error("monitor.update_failed", job_id=record.job_id, error=str(exc))
                continue
            updated += 1
        return updated


__all__ = ["JobStatusMonitor", "MethodFactory"]
