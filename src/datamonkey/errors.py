"""Exception hierarchy shared by the job orchestration core."""

from __future__ import annotations

from typing import Any, Mapping


class DatamonkeyError(RuntimeError):
    """Base class for predictable orchestration failures.

    Every error carries a machine readable ``code``, an optional ``hint`` for
    operators, an HTTP-equivalent ``status_code`` and a ``context`` mapping
    describing the operation (job id, method, scheduler id, ...).
    """

    default_code = "datamonkey.error"
    default_status = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        hint: str | None = None,
        status_code: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.hint = hint
        self.status_code = status_code or self.default_status
        self.context: dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        return self.message


class AdaptationError(DatamonkeyError):
    """Raised when a request value cannot be normalised."""

    default_code = "request.adaptation_error"
    default_status = 400


class ValidationError(DatamonkeyError):
    """Raised when a job or dataset invariant is violated."""

    default_code = "job.validation_error"
    default_status = 400


class InvalidJobError(ValidationError):
    """Raised by :meth:`BaseJob.validate` for incomplete jobs."""

    default_code = "job.invalid"


class DatasetError(DatamonkeyError):
    """Raised when a dataset reference cannot be resolved or is invalid."""

    default_code = "dataset.error"
    default_status = 400


class ConfigurationError(DatamonkeyError):
    """Raised when the backend or application is missing required setup."""

    default_code = "scheduler.configuration_error"
    default_status = 500


class SubmissionError(DatamonkeyError):
    """Raised when the backend rejects a job or returns unparseable output."""

    default_code = "scheduler.submission_error"
    default_status = 502


class PollError(DatamonkeyError):
    """Raised when the backend cannot be contacted during a status check."""

    default_code = "scheduler.poll_error"
    default_status = 503


class CancellationError(DatamonkeyError):
    """Raised when the backend refuses to cancel a job."""

    default_code = "scheduler.cancel_error"
    default_status = 502


class TrackerError(DatamonkeyError):
    """Base class for job tracker persistence failures."""

    default_code = "tracker.error"
    default_status = 500


class NotFoundError(TrackerError):
    """Raised when a job id is unknown to the tracker."""

    default_code = "tracker.not_found"
    default_status = 404


class PermissionDeniedError(TrackerError):
    """Raised when a job belongs to a different owner."""

    default_code = "tracker.permission_denied"
    default_status = 403


class TrackerClosedError(TrackerError):
    """Raised for any operation issued after :meth:`close`."""

    default_code = "tracker.closed"


class JobNotCompleteError(DatamonkeyError):
    """Raised when results are requested for a job that is still in flight."""

    default_code = "job.not_complete"
    default_status = 202

    def __init__(self, message: str, *, status: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class ResultError(DatamonkeyError):
    """Raised when a finished job's output cannot be read or decoded."""

    default_code = "job.result_error"
    default_status = 500


__all__ = [
    "AdaptationError",
    "CancellationError",
    "ConfigurationError",
    "DatamonkeyError",
    "DatasetError",
    "InvalidJobError",
    "JobNotCompleteError",
    "NotFoundError",
    "PermissionDeniedError",
    "PollError",
    "ResultError",
    "SubmissionError",
    "TrackerClosedError",
    "TrackerError",
    "ValidationError",
]
