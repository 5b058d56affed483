"""Job lifecycle states."""

from __future__ import annotations

from enum import Enum
from typing import Final


class JobStatus(str, Enum):
    """Closed set of states a job can report.

    Jobs move from ``pending`` to ``running`` and finish in one of the terminal
    states. Nothing transitions out of a terminal state.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: Final[frozenset[JobStatus]] = frozenset(
    {JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELLED}
)
ACTIVE_STATUSES: Final[frozenset[JobStatus]] = frozenset(
    {JobStatus.PENDING, JobStatus.RUNNING}
)


__all__ = ["ACTIVE_STATUSES", "JobStatus", "TERMINAL_STATUSES"]
