"""Scheduler diagnostics."""

from __future__ import annotations

from pathlib import Path

import typer

from apps.dmctl.context import PROFILE_OPTION, WORKSPACE_OPTION, open_service
from apps.dmctl.utils.errors import DmctlExternalServiceError, translate_error

app = typer.Typer(name="scheduler", help="Inspect the configured batch scheduler.")


@app.command("health")
def health(
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Check that the scheduler can accept jobs."""

    with open_service(profile, workspace) as service:
        report = service.check_health()
        backend = service.scheduler.name

    if report.healthy:
        typer.secho(f"{backend}: {report.detail}", fg=typer.colors.GREEN)
        return
    if report.error is not None:
        raise translate_error(report.error)
    raise DmctlExternalServiceError(f"{backend}: {report.detail}")


__all__ = ["app"]
