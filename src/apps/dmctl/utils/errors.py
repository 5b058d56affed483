"""CLI error types and the translation of core errors into exit codes."""

from __future__ import annotations

from enum import IntEnum

from datamonkey.errors import (
    AdaptationError,
    CancellationError,
    ConfigurationError,
    DatamonkeyError,
    DatasetError,
    JobNotCompleteError,
    NotFoundError,
    PermissionDeniedError,
    PollError,
    ResultError,
    SubmissionError,
    TrackerError,
    ValidationError,
)


class ExitCode(IntEnum):
    """Standardised exit codes for the dmctl CLI."""

    SUCCESS = 0
    VALIDATION = 1
    IO = 2
    CONFIG = 3
    EXTERNAL = 4
    RUNTIME = 5


class DmctlError(Exception):
    """Base for predictable CLI errors that surface to users."""

    exit_code: ExitCode = ExitCode.RUNTIME
    label = "Error"

    def __init__(
        self, message: str, *, exit_code: ExitCode | int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is None:
            exit_code = type(self).exit_code
        self.exit_code = ExitCode(exit_code)

    def __str__(self) -> str:
        return self.message

    @property
    def heading(self) -> str:
        """Return a short label describing the error class."""

        return type(self).label


class DmctlValidationError(DmctlError):
    """Raised when user input fails validation checks."""

    exit_code = ExitCode.VALIDATION
    label = "Validation error"


class DmctlNotFoundError(DmctlValidationError):
    label = "Not found"


class DmctlPermissionError(DmctlValidationError):
    label = "Permission denied"


class DmctlIOError(DmctlError):
    """Raised when datasets, results or the job store cannot be read or written."""

    exit_code = ExitCode.IO
    label = "I/O error"


class DmctlConfigError(DmctlError):
    """Raised when configuration or environment is invalid."""

    exit_code = ExitCode.CONFIG
    label = "Configuration error"


class DmctlExternalServiceError(DmctlError):
    """Raised when the batch scheduler fails to respond correctly."""

    exit_code = ExitCode.EXTERNAL
    label = "Scheduler error"


class DmctlRuntimeError(DmctlError):
    """Raised for unexpected runtime failures."""

    exit_code = ExitCode.RUNTIME
    label = "Runtime error"


class DmctlJobPendingError(DmctlRuntimeError):
    label = "Job not complete"


# Ordered most specific first; the first matching core type wins.
_TRANSLATIONS: tuple[tuple[type[DatamonkeyError], type[DmctlError]], ...] = (
    (NotFoundError, DmctlNotFoundError),
    (PermissionDeniedError, DmctlPermissionError),
    (JobNotCompleteError, DmctlJobPendingError),
    (AdaptationError, DmctlValidationError),
    (ValidationError, DmctlValidationError),
    (ConfigurationError, DmctlConfigError),
    (SubmissionError, DmctlExternalServiceError),
    (PollError, DmctlExternalServiceError),
    (CancellationError, DmctlExternalServiceError),
    (DatasetError, DmctlIOError),
    (ResultError, DmctlIOError),
    (TrackerError, DmctlIOError),
)


def translate_error(exc: DatamonkeyError) -> DmctlError:
    """Return the CLI error matching the core error *exc*."""

    cli_type: type[DmctlError] = DmctlRuntimeError
    for core_type, candidate in _TRANSLATIONS:
        if isinstance(exc, core_type):
            cli_type = candidate
            break
    message = exc.message
    if isinstance(exc, JobNotCompleteError):
        message = f"{message} Current status: {exc.status}."
    if exc.hint:
        message = f"{message} {exc.hint}"
    return cli_type(message)


__all__ = [
    "DmctlConfigError",
    "DmctlError",
    "DmctlExternalServiceError",
    "DmctlIOError",
    "DmctlJobPendingError",
    "DmctlNotFoundError",
    "DmctlPermissionError",
    "DmctlRuntimeError",
    "DmctlValidationError",
    "ExitCode",
    "translate_error",
]
