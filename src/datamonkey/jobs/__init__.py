"""Job entities, identity and lifecycle states."""

from datamonkey.jobs.job import (
    AnalysisJob,
    BaseJob,
    JobLike,
    StatusResult,
    job_id_for_command,
    new_job,
)
from datamonkey.jobs.status import ACTIVE_STATUSES, TERMINAL_STATUSES, JobStatus

__all__ = [
    "ACTIVE_STATUSES",
    "AnalysisJob",
    "BaseJob",
    "JobLike",
    "JobStatus",
    "StatusResult",
    "TERMINAL_STATUSES",
    "job_id_for_command",
    "new_job",
]
