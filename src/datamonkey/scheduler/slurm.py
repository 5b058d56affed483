"""Slurm batch scheduler backend driven through its command line tools."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Mapping

import structlog

from datamonkey.errors import (
    CancellationError,
    ConfigurationError,
    DatamonkeyError,
    InvalidJobError,
    PollError,
    SubmissionError,
)
from datamonkey.jobs.job import BaseJob, JobLike
from datamonkey.jobs.status import JobStatus
from datamonkey.scheduler.base import HealthReport
from datamonkey.scheduler.runner import CommandRunner, SubprocessRunner
from datamonkey.tracking.base import JobTracker

log = structlog.get_logger(__name__)

#: ``squeue`` states and the job status they map to.
SLURM_STATES: Final[Mapping[str, JobStatus]] = {
    "PENDING": JobStatus.PENDING,
    "CONFIGURING": JobStatus.PENDING,
    "REQUEUED": JobStatus.PENDING,
    "RUNNING": JobStatus.RUNNING,
    "COMPLETING": JobStatus.RUNNING,
    "SUSPENDED": JobStatus.RUNNING,
    "COMPLETED": JobStatus.COMPLETE,
    "FAILED": JobStatus.FAILED,
    "TIMEOUT": JobStatus.FAILED,
    "OUT_OF_MEMORY": JobStatus.FAILED,
    "NODE_FAIL": JobStatus.FAILED,
    "BOOT_FAIL": JobStatus.FAILED,
    "DEADLINE": JobStatus.FAILED,
    "PREEMPTED": JobStatus.FAILED,
    "CANCELLED": JobStatus.CANCELLED,
}

INVALID_JOB_ID_MARKER: Final[str] = "Invalid job id specified"
SUCCESS_EXIT_CODE: Final[str] = "0:0"
MIN_SBATCH_TOKENS: Final[int] = 4

#: Job metadata keys overriding per-job resources.
METADATA_NODE_COUNT: Final[str] = "slurm_node_count"
METADATA_CORES_PER_NODE: Final[str] = "slurm_cores_per_node"
METADATA_MEMORY_PER_NODE: Final[str] = "slurm_memory_per_node"
METADATA_MAX_TIME: Final[str] = "slurm_max_time"


@dataclass(frozen=True, slots=True)
class SlurmResources:
    """Resources requested for one submission."""

    node_count: int
    cores_per_node: int
    memory_per_node: str
    max_time: str


FALLBACK_RESOURCES: Final[SlurmResources] = SlurmResources(
    node_count=1,
    cores_per_node=1,
    memory_per_node="900M",
    max_time="01:00:00",
)


@dataclass(frozen=True, slots=True)
class SlurmJobDefaults:
    """Backend-wide resource defaults; unset fields fall back to built-ins."""

    node_count: int | None = None
    cores_per_node: int | None = None
    memory_per_node: str | None = None
    max_time: str | None = None


@dataclass(frozen=True, slots=True)
class SlurmConfig:
    """Static configuration for :class:`SlurmScheduler`."""

    partition: str = ""
    defaults: SlurmJobDefaults = SlurmJobDefaults()


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


def _non_empty_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def resolve_resources(
    job: BaseJob,
    defaults: SlurmJobDefaults = SlurmJobDefaults(),
    fallback: SlurmResources = FALLBACK_RESOURCES,
) -> SlurmResources:
    """Resolve resources for *job*: metadata, then *defaults*, then *fallback*."""

    metadata = job.metadata or {}
    return SlurmResources(
        node_count=_positive_int(metadata.get(METADATA_NODE_COUNT))
        or _positive_int(defaults.node_count)
        or fallback.node_count,
        cores_per_node=_positive_int(metadata.get(METADATA_CORES_PER_NODE))
        or _positive_int(defaults.cores_per_node)
        or fallback.cores_per_node,
        memory_per_node=_non_empty_str(metadata.get(METADATA_MEMORY_PER_NODE))
        or _non_empty_str(defaults.memory_per_node)
        or fallback.memory_per_node,
        max_time=_non_empty_str(metadata.get(METADATA_MAX_TIME))
        or _non_empty_str(defaults.max_time)
        or fallback.max_time,
    )


def parse_sbatch_output(output: str) -> str:
    """Extract the Slurm job id from ``Submitted batch job <id>``."""

    tokens = output.strip().split()
    if len(tokens) < MIN_SBATCH_TOKENS:
        raise SubmissionError(
            f"Unexpected sbatch output format: {output.strip()!r}",
            code="scheduler.slurm.unexpected_output",
            context={"output": output},
        )
    return tokens[-1]


def _first_line(output: str) -> str:
    for line in output.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped
    return ""


class SlurmScheduler:
    """Submit and track jobs with ``sbatch``, ``squeue``, ``scancel`` and ``sacct``."""

    name = "slurm"

    def __init__(
        self,
        config: SlurmConfig,
        tracker: JobTracker,
        *,
        runner: CommandRunner | None = None,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self._run: CommandRunner = runner or SubprocessRunner()
        if not config.partition:
            log.warning(
                "scheduler.slurm.no_partition",
                hint="Submissions will fail until a partition is configured.",
            )

    def resources_for(self, job: JobLike) -> SlurmResources:
        return resolve_resources(job.base_job, self.config.defaults)

    def _require_partition(self, job_id: str | None = None) -> str:
        if not self.config.partition:
            log.error("scheduler.slurm.configuration_error", job_id=job_id)
            raise ConfigurationError(
                "Slurm partition cannot be empty.",
                hint="Set 'slurm.partition' in the active profile.",
                context={"job_id": job_id},
            )
        return self.config.partition

    def submit(self, job: JobLike) -> None:
        job.validate()
        base = job.base_job
        partition = self._require_partition(base.id)
        resources = self.resources_for(job)
        method = base.method
        if method is None:
            raise InvalidJobError(
                "Job method cannot be empty.", context={"job_id": base.id}
            )
        args = [
            "sbatch",
            "--partition",
            partition,
            "--nodes",
            str(resources.node_count),
            "--ntasks-per-node",
            str(resources.cores_per_node),
            "--mem",
            resources.memory_per_node,
            "--time",
            resources.max_time,
            "--output",
            base.log_path,
            "--wrap",
            method.command(),
        ]
        log.info(
            "scheduler.slurm.submit.start",
            job_id=base.id,
            partition=partition,
            nodes=resources.node_count,
            cores=resources.cores_per_node,
            memory=resources.memory_per_node,
            time=resources.max_time,
        )
        result = self._run(args)
        if not result.ok:
            log.error(
                "scheduler.slurm.submit.failed",
                job_id=base.id,
                returncode=result.returncode,
                output=result.output,
            )
            raise SubmissionError(
                f"Failed to submit job: {result.output.strip()}",
                context={"job_id": base.id, "returncode": result.returncode},
            )

        try:
            slurm_job_id = parse_sbatch_output(result.stdout or result.output)
        except SubmissionError as exc:
            exc.context["job_id"] = base.id
            log.error(
                "scheduler.slurm.submit.unparseable",
                job_id=base.id,
                output=result.output,
            )
            raise

        if base.user_id:
            self.tracker.store_job_with_user(base.id, slurm_job_id, base.user_id)
        else:
            self.tracker.store_job_mapping(base.id, slurm_job_id)
        base.touch()
        log.info(
            "scheduler.slurm.submit.success",
            job_id=base.id,
            slurm_job_id=slurm_job_id,
        )

    def cancel(self, job: JobLike) -> None:
        base = job.base_job
        slurm_job_id = self.tracker.get_scheduler_job_id(base.id)
        result = self._run(["scancel", slurm_job_id])
        if not result.ok:
            log.error(
                "scheduler.slurm.cancel.failed",
                job_id=base.id,
                slurm_job_id=slurm_job_id,
                output=result.output,
            )
            raise CancellationError(
                f"Failed to cancel job: {result.output.strip()}",
                context={"job_id": base.id, "slurm_job_id": slurm_job_id},
            )
        self.tracker.delete_job_mapping(base.id)
        base.touch()
        log.info(
            "scheduler.slurm.cancel.success", job_id=base.id, slurm_job_id=slurm_job_id
        )

    def get_status(self, job: JobLike) -> JobStatus:
        base = job.base_job
        slurm_job_id = self.tracker.get_scheduler_job_id(base.id)
        result = self._run(
            ["squeue", "--job", slurm_job_id, "--format=%T", "--noheader"]
        )

        finalise = True
        if not result.ok:
            if INVALID_JOB_ID_MARKER not in result.output:
                log.warning(
                    "scheduler.slurm.status.failed",
                    job_id=base.id,
                    slurm_job_id=slurm_job_id,
                    output=result.output,
                )
                raise PollError(
                    f"Failed to get job status: {result.output.strip()}",
                    hint="Unable to determine status; try again later.",
                    context={"job_id": base.id, "slurm_job_id": slurm_job_id},
                )
            status = self._reconcile_finished(base, slurm_job_id)
        else:
            state = _first_line(result.stdout)
            if not state:
                # Already purged from the live queue.
                status = self._reconcile_finished(base, slurm_job_id)
            elif state.upper() in SLURM_STATES:
                status = SLURM_STATES[state.upper()]
            else:
                # Reported as failed but left tracked so a later poll can
                # still see the real state.
                status = JobStatus.FAILED
                finalise = False
                log.warning(
                    "scheduler.slurm.status.unknown_state",
                    job_id=base.id,
                    slurm_job_id=slurm_job_id,
                    state=state,
                )

        if finalise and status.is_terminal:
            self._finalise(base.id, status)
        log.debug(
            "scheduler.slurm.status",
            job_id=base.id,
            slurm_job_id=slurm_job_id,
            status=status.value,
        )
        return status

    def _reconcile_finished(self, job: BaseJob, slurm_job_id: str) -> JobStatus:
        """Classify a job the live queue no longer knows via its exit code."""

        result = self._run(
            ["sacct", "-j", slurm_job_id, "--format=ExitCode", "--noheader"]
        )
        if not result.ok:
            log.warning(
                "scheduler.slurm.accounting.failed",
                job_id=job.id,
                slurm_job_id=slurm_job_id,
                output=result.output,
            )
            return JobStatus.FAILED
        exit_code = _first_line(result.stdout)
        log.info(
            "scheduler.slurm.accounting",
            job_id=job.id,
            slurm_job_id=slurm_job_id,
            exit_code=exit_code,
        )
        return JobStatus.COMPLETE if exit_code == SUCCESS_EXIT_CODE else JobStatus.FAILED

    def _finalise(self, job_id: str, status: JobStatus) -> None:
        # Cleanup failures never change the status already determined.
        try:
            self.tracker.update_job_status(job_id, status.value)
        except DatamonkeyError as exc:
            log.warning(
                "scheduler.slurm.status_record_failed", job_id=job_id, error=str(exc)
            )
        try:
            self.tracker.delete_job_mapping(job_id)
        except DatamonkeyError as exc:
            log.warning(
                "scheduler.slurm.mapping_delete_failed", job_id=job_id, error=str(exc)
            )

    def check_health(self) -> HealthReport:
        partition = self.config.partition
        if not partition:
            return HealthReport(
                False,
                "No partition specified",
                ConfigurationError("Partition must be specified in configuration."),
            )

        result = self._run(["sinfo", "--version"])
        if not result.ok:
            return HealthReport(
                False,
                "Slurm command-line tools unavailable",
                PollError(
                    f"Failed to execute sinfo: {result.output.strip()}",
                    context={"returncode": result.returncode},
                ),
            )

        result = self._run(["sinfo", "-p", partition, "--noheader", "--format=%P,%a"])
        if not result.ok:
            return HealthReport(
                False,
                f"Partition {partition} check failed",
                PollError(f"Failed to check partition: {result.output.strip()}"),
            )
        output = result.stdout.strip()
        if not output:
            return HealthReport(
                False,
                f"Partition {partition} not found",
                ConfigurationError(f"Partition {partition} not found in sinfo output."),
            )
        if not _partition_is_up(output):
            return HealthReport(
                False,
                f"Partition {partition} is not available",
                PollError(f"Partition {partition} is not available: {output}"),
            )
        return HealthReport(True, "Slurm scheduler is operational")


def _partition_is_up(output: str) -> bool:
    for line in output.splitlines():
        _, _, availability = line.strip().partition(",")
        if availability.strip().lower() == "up":
            return True
    return False


__all__ = [
    "FALLBACK_RESOURCES",
    "SLURM_STATES",
    "SlurmConfig",
    "SlurmJobDefaults",
    "SlurmResources",
    "SlurmScheduler",
    "parse_sbatch_output",
    "resolve_resources",
]
