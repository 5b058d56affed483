"""Start, poll and fetch analyses on top of a scheduler and a job tracker."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, TypedDict

import structlog

from datamonkey.analysis.adapter import adapt_request
from datamonkey.analysis.datasets import DatasetStore, DirectoryDatasetStore
from datamonkey.analysis.methods import HyPhyMethod, MethodType, resolve_method_type
from datamonkey.errors import (
    JobNotCompleteError,
    NotFoundError,
    PermissionDeniedError,
    ResultError,
    ValidationError,
)
from datamonkey.jobs.job import AnalysisJob, BaseJob, new_job
from datamonkey.jobs.status import JobStatus
from datamonkey.scheduler import build_scheduler
from datamonkey.scheduler.base import HealthReport, Scheduler
from datamonkey.tracking import build_tracker
from datamonkey.tracking.base import JobRecord, JobTracker

if TYPE_CHECKING:
    from datamonkey.config import Settings

log = structlog.get_logger(__name__)


class StartedJob(TypedDict):
    jobId: str
    status: str


class JobResult(TypedDict):
    jobId: str
    status: str
    results: Any


class JobSummary(TypedDict):
    jobId: str
    status: str
    methodType: str
    alignmentId: str
    treeId: str
    owner: str
    active: bool
    createdAt: str
    updatedAt: str


def _summary(record: JobRecord) -> JobSummary:
    return {
        "jobId": record.job_id,
        "status": record.status,
        "methodType": record.method_type,
        "alignmentId": record.alignment_id,
        "treeId": record.tree_id,
        "owner": record.user_id,
        "active": record.has_mapping,
        "createdAt": record.created_at.isoformat(),
        "updatedAt": record.updated_at.isoformat(),
    }


class AnalysisService:
    """Facade composing requests, datasets, methods, scheduler and tracker.

    Every call is safe to make from several threads at once as long as the
    scheduler and tracker are; the service itself keeps no mutable state.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        tracker: JobTracker,
        datasets: DatasetStore,
        *,
        hyphy_path: str = "hyphy",
        results_dir: Path | str = "results",
    ) -> None:
        self.scheduler = scheduler
        self.tracker = tracker
        self.datasets = datasets
        self.hyphy_path = hyphy_path
        self.results_dir = Path(results_dir)

    def method_factory(
        self, method_type: MethodType | str, request: Any = None
    ) -> HyPhyMethod:
        """Return the HyPhy method for *method_type*, optionally bound to *request*."""

        return HyPhyMethod(
            request,
            resolve_method_type(method_type),
            hyphy_path=self.hyphy_path,
            results_dir=self.results_dir,
            data_dir=self.datasets.dataset_dir,
        )

    # flows ---------------------------------------------------------------

    def start_job(
        self,
        request: Any,
        method_type: MethodType | str,
        user_id: str | None = None,
    ) -> StartedJob:
        """Submit *request* unless an identical job already exists.

        Returns the job id with its current status for an existing job and
        ``pending`` for a fresh submission.
        """

        adapted = adapt_request(request)
        method = self.method_factory(method_type, adapted)
        reference = adapted.tree if method.is_tree_only else adapted.alignment
        if not reference:
            raise ValidationError(
                f"The {method.method_type.value} analysis needs a dataset reference.",
                context={"method": method.method_type.value},
            )

        dataset = self.datasets.get(reference)
        dataset.validate()
        method.validate_input(dataset)

        job = new_job(adapted, method, self.scheduler, user_id=user_id or "")
        existing = self._existing_status(job)
        if existing is not None:
            log.info(
                "analysis.start.existing",
                job_id=job.id,
                method=method.method_type.value,
                status=existing.value,
            )
            return {"jobId": job.id, "status": existing.value}

        log.info(
            "analysis.start.submit",
            job_id=job.id,
            method=method.method_type.value,
            user_id=user_id or None,
        )
        self.scheduler.submit(job)
        self.tracker.store_job_metadata(
            job.id,
            job.base.alignment_id,
            job.base.tree_id,
            method.method_type.value,
            JobStatus.PENDING.value,
        )
        return {"jobId": job.id, "status": JobStatus.PENDING.value}

    def get_job(
        self,
        request: Any,
        method_type: MethodType | str,
        user_id: str | None = None,
    ) -> JobResult:
        """Return the decoded results of the job *request* resolves to.

        Raises :class:`JobNotCompleteError` while the job is still pending or
        running, or once it ended in any state other than ``complete``.
        """

        adapted = adapt_request(request)
        method = self.method_factory(method_type, adapted)
        job = new_job(adapted, method, self.scheduler, user_id=user_id or "")
        self._check_access(job.id, user_id)
        status = self._current_status(job)
        if status is not JobStatus.COMPLETE:
            raise JobNotCompleteError(
                f"Job '{job.id}' is not complete.",
                status=status.value,
                context={"job_id": job.id},
            )
        return {
            "jobId": job.id,
            "status": status.value,
            "results": self._read_results(job.id, method),
        }

    def get_job_by_id(self, job_id: str, user_id: str | None = None) -> JobSummary:
        record = self.tracker.get_job_record(job_id)
        self._require_owner(record, user_id, "access")
        return _summary(record)

    def get_results_by_id(self, job_id: str, user_id: str | None = None) -> JobResult:
        """Return the results of a finished job looked up by *job_id*."""

        record = self.tracker.get_job_record(job_id)
        self._require_owner(record, user_id, "access")
        if not record.method_type:
            raise ValidationError(
                f"Job '{job_id}' has no recorded method type.",
                context={"job_id": job_id},
            )
        method = self.method_factory(record.method_type)
        status = self._record_status(record, method)
        if status is not JobStatus.COMPLETE:
            raise JobNotCompleteError(
                f"Job '{job_id}' is not complete.",
                status=status.value,
                context={"job_id": job_id},
            )
        return {
            "jobId": job_id,
            "status": status.value,
            "results": self._read_results(job_id, method),
        }

    def cancel_job(
        self,
        job_id: str,
        method_type: MethodType | str | None = None,
        user_id: str | None = None,
    ) -> JobSummary:
        record = self.tracker.get_job_record(job_id)
        self._require_owner(record, user_id, "cancel")
        if method_type is not None:
            expected = resolve_method_type(method_type).value
            if record.method_type and record.method_type != expected:
                raise ValidationError(
                    f"Job '{job_id}' is a {record.method_type} job, not {expected}.",
                    context={"job_id": job_id, "method": expected},
                )
        job = BaseJob(id=job_id, scheduler=self.scheduler, user_id=record.user_id)
        self.scheduler.cancel(job)
        self.tracker.update_job_status(job_id, JobStatus.CANCELLED.value)
        log.info("analysis.cancel.success", job_id=job_id, user_id=user_id or None)
        return _summary(self.tracker.get_job_record(job_id))

    def list_jobs(self, user_id: str | None = None, **filters: Any) -> list[JobSummary]:
        """Return summaries of tracked jobs, newest first."""

        criteria = {key: value for key, value in filters.items() if value is not None}
        if user_id:
            criteria["user_id"] = user_id
        summaries: list[JobSummary] = []
        for job_id in self.tracker.list_jobs_with_filters(criteria):
            try:
                summaries.append(_summary(self.tracker.get_job_record(job_id)))
            except NotFoundError:
                log.debug("analysis.list.vanished", job_id=job_id)
        return summaries

    def delete_job(self, job_id: str, user_id: str | None = None) -> None:
        if user_id:
            self.tracker.delete_job_mapping_by_user(job_id, user_id)
        else:
            self.tracker.delete_job_mapping(job_id)
        log.info("analysis.delete.success", job_id=job_id, user_id=user_id or None)

    def check_health(self) -> HealthReport:
        return self.scheduler.check_health()

    # helpers -------------------------------------------------------------

    def _existing_status(self, job: AnalysisJob) -> JobStatus | None:
        """Return the status of a job already known under *job*'s id.

        A job whose mapping was removed after it completed is reported as
        complete. Failed or cancelled jobs without a mapping are resubmitted.
        """

        result = job.get_status()
        if not isinstance(result.error, NotFoundError):
            return result.unwrap()
        try:
            record = self.tracker.get_job_record(job.id)
        except NotFoundError:
            return None
        if record.status == JobStatus.COMPLETE.value:
            return JobStatus.COMPLETE
        return None

    def _current_status(self, job: AnalysisJob) -> JobStatus:
        result = job.get_status()
        if isinstance(result.error, NotFoundError):
            try:
                record = self.tracker.get_job_record(job.id)
            except NotFoundError:
                raise result.error from None
            return JobStatus(record.status)
        return result.unwrap()

    def _record_status(self, record: JobRecord, method: HyPhyMethod) -> JobStatus:
        if not record.has_mapping:
            return JobStatus(record.status)
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
        return job.get_status().unwrap()

    def _check_access(self, job_id: str, user_id: str | None) -> None:
        if not user_id:
            return
        try:
            record = self.tracker.get_job_record(job_id)
        except NotFoundError:
            return
        self._require_owner(record, user_id, "access")

    @staticmethod
    def _require_owner(record: JobRecord, user_id: str | None, action: str) -> None:
        if user_id is None or record.owned_by(user_id):
            return
        log.warning(
            "analysis.permission_denied",
            job_id=record.job_id,
            user_id=user_id,
            action=action,
        )
        raise PermissionDeniedError(
            f"User does not have permission to {action} this job.",
            context={"job_id": record.job_id, "user_id": user_id},
        )

    def _read_results(self, job_id: str, method: HyPhyMethod) -> Any:
        path = method.output_path(job_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            log.error("analysis.results.unreadable", job_id=job_id, path=str(path))
            raise ResultError(
                f"Failed to read results for job '{job_id}': {exc}",
                context={"job_id": job_id, "path": str(path)},
            ) from exc
        log.debug("analysis.results.read", job_id=job_id, length=len(raw))
        return method.parse_result(raw)


def build_service(settings: "Settings") -> AnalysisService:
    """Wire a tracker, scheduler and dataset store from *settings*."""

    tracker = build_tracker(settings)
    scheduler = build_scheduler(settings, tracker)
    return AnalysisService(
        scheduler,
        tracker,
        DirectoryDatasetStore(settings.data_dir),
        hyphy_path=settings.hyphy_path,
        results_dir=settings.results_dir,
    )


__all__ = [
    "AnalysisService",
    "JobResult",
    "JobSummary",
    "StartedJob",
    "build_service",
]
