"""Orchestration facade and background job monitoring."""

from datamonkey.orchestration.monitor import JobStatusMonitor, MethodFactory
from datamonkey.orchestration.service import (
    AnalysisService,
    JobResult,
    JobSummary,
    StartedJob,
    build_service,
)

__all__ = [
    "AnalysisService",
    "JobResult",
    "JobStatusMonitor",
    "JobSummary",
    "MethodFactory",
    "StartedJob",
    "build_service",
]
