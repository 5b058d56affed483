"""Scheduler contract and batch backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from datamonkey.errors import ConfigurationError
from datamonkey.scheduler.base import HealthReport, Scheduler
from datamonkey.scheduler.mock import MockScheduler
from datamonkey.scheduler.runner import CommandResult, CommandRunner, SubprocessRunner
from datamonkey.scheduler.slurm import SlurmConfig, SlurmJobDefaults, SlurmScheduler
from datamonkey.scheduler.slurm_rest import SlurmRestConfig, SlurmRestScheduler

if TYPE_CHECKING:
    from datamonkey.config import Settings
    from datamonkey.tracking.base import JobTracker

SCHEDULER_BACKENDS: tuple[str, ...] = ("slurm", "slurm-rest", "mock")


def build_scheduler(
    settings: "Settings",
    tracker: "JobTracker",
    *,
    runner: CommandRunner | None = None,
) -> Scheduler:
    """Instantiate the scheduler backend selected by *settings*."""

    if settings.scheduler == "mock":
        return MockScheduler(tracker, write_results=True)
    if settings.scheduler == "slurm":
        slurm = settings.slurm
        config = SlurmConfig(
            partition=slurm.partition,
            defaults=SlurmJobDefaults(
                node_count=slurm.node_count,
                cores_per_node=slurm.cores_per_node,
                memory_per_node=slurm.memory_per_node,
                max_time=slurm.max_time,
            ),
        )
        return SlurmScheduler(
            config,
            tracker,
            runner=runner or SubprocessRunner(prefix=slurm.command_prefix),
        )
    if settings.scheduler == "slurm-rest":
        rest = settings.slurm_rest
        return SlurmRestScheduler(
            SlurmRestConfig(
                base_url=rest.base_url,
                api_path=rest.api_path,
                submit_api_path=rest.submit_api_path,
                queue_name=rest.queue_name,
                auth_token=rest.auth_token,
                token_refresh_interval=rest.token_refresh_interval,
                jwt_key_path=rest.jwt_key_path,
                jwt_username=rest.jwt_username,
                jwt_expiration_secs=rest.jwt_expiration_secs,
                timeout=rest.timeout,
            ),
            tracker,
        )
    raise ConfigurationError(
        f"Unknown scheduler backend '{settings.scheduler}'.",
        hint=f"Choose one of: {', '.join(SCHEDULER_BACKENDS)}.",
    )


__all__ = [
    "CommandResult",
    "CommandRunner",
    "HealthReport",
    "MockScheduler",
    "SCHEDULER_BACKENDS",
    "Scheduler",
    "SlurmConfig",
    "SlurmJobDefaults",
    "SlurmRestConfig",
    "SlurmRestScheduler",
    "SlurmScheduler",
    "SubprocessRunner",
    "build_scheduler",
]
