"""Job entities and their deterministic identity."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, runtime_checkable

import structlog

from datamonkey.analysis.adapter import AnalysisRequest, adapt_request
from datamonkey.errors import DatamonkeyError, InvalidJobError
from datamonkey.jobs.status import JobStatus

if TYPE_CHECKING:
    from datamonkey.analysis.methods import ComputeMethod
    from datamonkey.scheduler.base import Scheduler

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def job_id_for_command(command: str) -> str:
    """Return the job identity for a resolved *command* line."""

    return hashlib.sha256(command.encode("utf-8")).hexdigest()


class StatusResult(NamedTuple):
    """Outcome of asking a job for its status.

    ``error`` is set when the scheduler could not be queried, in which case
    ``status`` is :attr:`JobStatus.FAILED`.
    """

    status: JobStatus
    error: DatamonkeyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> JobStatus:
        """Return the status, raising the recorded error if there is one."""

        if self.error is not None:
            raise self.error
        return self.status


@runtime_checkable
class JobLike(Protocol):
    """Anything that exposes a validatable :class:`BaseJob`."""

    @property
    def base_job(self) -> "BaseJob": ...

    def validate(self) -> None: ...


@dataclass(eq=False)
class BaseJob:
    """One unit of work handed to a scheduler."""

    id: str
    alignment_id: str = ""
    tree_id: str = ""
    scheduler: "Scheduler | None" = field(default=None, repr=False)
    method: "ComputeMethod | None" = field(default=None, repr=False)
    output_path: str = ""
    log_path: str = ""
    user_id: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def base_job(self) -> "BaseJob":
        return self

    @property
    def dataset_id(self) -> str:
        return self.alignment_id or self.tree_id

    def validate(self) -> None:
        if not self.id:
            raise InvalidJobError("Job ID cannot be empty.")
        context = {"job_id": self.id}
        if not self.alignment_id and not self.tree_id:
            raise InvalidJobError(
                "At least one of alignment_id or tree_id is required.",
                context=context,
            )
        if not self.log_path:
            raise InvalidJobError("Job log path cannot be empty.", context=context)
        if self.scheduler is None:
            raise InvalidJobError("Scheduler is required.", context=context)
        if self.method is None:
            raise InvalidJobError("Job method cannot be empty.", context=context)
        if not self.method.command():
            raise InvalidJobError("Job command cannot be empty.", context=context)

    def get_status(self) -> StatusResult:
        return _delegate_status(self)

    def touch(self) -> None:
        self.updated_at = _utcnow()


@dataclass(eq=False)
class AnalysisJob:
    """A :class:`BaseJob` bound to the request that produced it."""

    base: BaseJob
    request: AnalysisRequest | None = None

    @property
    def base_job(self) -> BaseJob:
        return self.base

    @property
    def id(self) -> str:
        return self.base.id

    @property
    def method(self) -> "ComputeMethod | None":
        return self.base.method

    @property
    def scheduler(self) -> "Scheduler | None":
        return self.base.scheduler

    def validate(self) -> None:
        self.base.validate()
        if self.request is None:
            raise InvalidJobError(
                "Analysis request is required.", context={"job_id": self.base.id}
            )

    def get_status(self) -> StatusResult:
        return _delegate_status(self)


def _delegate_status(job: JobLike) -> StatusResult:
    base = job.base_job
    if base.scheduler is None:
        return StatusResult(
            JobStatus.FAILED,
            InvalidJobError("Scheduler is required.", context={"job_id": base.id}),
        )
    try:
        status = base.scheduler.get_status(job)
    except DatamonkeyError as exc:
        log.debug("jobs.status.unavailable", job_id=base.id, error=str(exc))
        return StatusResult(JobStatus.FAILED, exc)
    return StatusResult(status)


def new_job(
    request: Any,
    method: "ComputeMethod",
    scheduler: "Scheduler | None",
    *,
    user_id: str = "",
) -> AnalysisJob:
    """Build the job for *request* bound to *method* and *scheduler*.

    The identity is derived from the resolved command line alone, so two
    requests that resolve to the same command are the same job.
    """

    adapted = adapt_request(request)
    job_id = job_id_for_command(method.command())
    base = BaseJob(
        id=job_id,
        alignment_id=adapted.alignment,
        tree_id=adapted.tree if adapted.tree_set else "",
        scheduler=scheduler,
        method=method,
        output_path=str(method.output_path(job_id)),
        log_path=str(method.log_path(job_id)),
        user_id=user_id,
    )
    return AnalysisJob(base=base, request=adapted)


__all__ = [
    "AnalysisJob",
    "BaseJob",
    "JobLike",
    "StatusResult",
    "job_id_for_command",
    "new_job",
]
