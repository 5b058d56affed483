"""Inspect and manage tracked jobs."""

from __future__ import annotations

import json
from pathlib import Path

import click
import structlog
import typer

from datamonkey.jobs.status import JobStatus
from datamonkey.orchestration import JobStatusMonitor, JobSummary

from apps.dmctl.analysis import METHOD_CHOICES
from apps.dmctl.context import (
    PROFILE_OPTION,
    USER_OPTION,
    WORKSPACE_OPTION,
    open_service,
    resolve_settings,
)

log = structlog.get_logger(__name__)

app = typer.Typer(name="jobs", help="List, inspect, cancel and delete jobs.")

STATUS_CHOICES = tuple(status.value for status in JobStatus)

_STATUS_COLOURS = {
    JobStatus.PENDING.value: typer.colors.YELLOW,
    JobStatus.RUNNING.value: typer.colors.BLUE,
    JobStatus.COMPLETE.value: typer.colors.GREEN,
    JobStatus.FAILED.value: typer.colors.RED,
    JobStatus.CANCELLED.value: typer.colors.MAGENTA,
}


def _render_row(summary: JobSummary) -> None:
    status = summary["status"]
    typer.echo(f"{summary['jobId'][:16]}  ", nl=False)
    typer.secho(f"{status:<9}", fg=_STATUS_COLOURS.get(status), nl=False)
    owner = summary["owner"] or "-"
    typer.echo(f"  {summary['methodType'] or '-':<12}  {owner:<12}  {summary['createdAt']}")


@app.command("list")
def list_jobs(
    user: str | None = USER_OPTION,
    method: str | None = typer.Option(
        None,
        "--method",
        "-m",
        help="Only show jobs for this method.",
        click_type=click.Choice(METHOD_CHOICES, case_sensitive=False),
    ),
    status: str | None = typer.Option(
        None,
        "--status",
        "-s",
        help="Only show jobs with this status.",
        click_type=click.Choice(STATUS_CHOICES, case_sensitive=False),
    ),
    alignment: str | None = typer.Option(
        None, "--alignment", help="Only show jobs for this alignment dataset."
    ),
    tree: str | None = typer.Option(
        None, "--tree", help="Only show jobs for this tree dataset."
    ),
    limit: int | None = typer.Option(
        None, "--limit", "-n", min=1, help="Maximum number of jobs to show."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the jobs as JSON."),
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """List tracked jobs, newest first."""

    with open_service(profile, workspace) as service:
        summaries = service.list_jobs(
            user,
            method_type=method.lower() if method else None,
            status=status.lower() if status else None,
            alignment_id=alignment,
            tree_id=tree,
            limit=limit,
        )

    if as_json:
        typer.echo(json.dumps(summaries, indent=2, sort_keys=True))
        return
    if not summaries:
        typer.echo("No jobs found.")
        return
    for summary in summaries:
        _render_row(summary)


@app.command("show")
def show(
    job_id: str = typer.Argument(..., help="Internal job identifier."),
    user: str | None = USER_OPTION,
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Print what the tracker knows about one job."""

    with open_service(profile, workspace) as service:
        summary = service.get_job_by_id(job_id, user_id=user)
    typer.echo(json.dumps(summary, indent=2, sort_keys=True))


@app.command("results")
def results(
    job_id: str = typer.Argument(..., help="Internal job identifier."),
    user: str | None = USER_OPTION,
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Print the results of a finished job looked up by id."""

    with open_service(profile, workspace) as service:
        payload = service.get_results_by_id(job_id, user_id=user)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Internal job identifier."),
    method: str | None = typer.Option(
        None,
        "--method",
        "-m",
        help="Refuse to cancel unless the job runs this method.",
        click_type=click.Choice(METHOD_CHOICES, case_sensitive=False),
    ),
    user: str | None = USER_OPTION,
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Cancel a queued or running job."""

    with open_service(profile, workspace) as service:
        summary = service.cancel_job(
            job_id, method.lower() if method else None, user_id=user
        )
    log.info("dmctl.jobs.cancelled", job_id=job_id, user=user)
    typer.secho(f"Cancelled job {summary['jobId']}.", fg=typer.colors.GREEN)


@app.command("delete")
def delete(
    job_id: str = typer.Argument(..., help="Internal job identifier."),
    user: str | None = USER_OPTION,
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Forget a job's scheduler mapping; its metadata is kept."""

    with open_service(profile, workspace) as service:
        service.delete_job(job_id, user_id=user)
    typer.secho(f"Deleted mapping for job {job_id}.", fg=typer.colors.GREEN)


@app.command("refresh")
def refresh(
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Poll every pending or running job once and record status changes."""

    with open_service(profile, workspace) as service:
        monitor = JobStatusMonitor(
            service.tracker, service.scheduler, service.method_factory
        )
        updated = monitor.run_once()
    typer.echo(f"Updated {updated} job(s).")


@app.command("watch")
def watch(
    interval: float | None = typer.Option(
        None,
        "--interval",
        min=0.1,
        help="Seconds between sweeps (defaults to the profile monitor_interval).",
    ),
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Keep polling active jobs in the background until interrupted."""

    settings = resolve_settings(profile, workspace)
    with open_service(profile, workspace) as service:
        monitor = JobStatusMonitor(
            service.tracker,
            service.scheduler,
            service.method_factory,
            interval=interval or settings.monitor_interval,
        )
        typer.echo(
            f"Watching active jobs every {monitor.interval:g}s. Press Ctrl+C to stop."
        )
        monitor.start()
        try:
            while monitor.running:
                monitor.wait(1.0)
        except KeyboardInterrupt:
            log.info("dmctl.jobs.watch_interrupted")
        finally:
            monitor.stop(timeout=5.0)


__all__ = ["app"]
