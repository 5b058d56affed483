"""Start analyses and fetch their results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Final

import click
import pydantic
import structlog
import typer

from datamonkey.analysis.methods import MethodType
from datamonkey.analysis.requests import MethodRequest, request_model_for

from apps.dmctl.context import (
    PROFILE_OPTION,
    USER_OPTION,
    WORKSPACE_OPTION,
    open_service,
)
from apps.dmctl.utils.errors import DmctlIOError, DmctlValidationError

log = structlog.get_logger(__name__)

app = typer.Typer(name="analysis", help="Submit HyPhy analyses and fetch results.")

METHOD_CHOICES: Final[tuple[str, ...]] = tuple(method.value for method in MethodType)

METHOD_OPTION = typer.Option(
    ...,
    "--method",
    "-m",
    help="HyPhy method to run.",
    click_type=click.Choice(METHOD_CHOICES, case_sensitive=False),
)
ALIGNMENT_OPTION = typer.Option(
    None, "--alignment", "-a", help="Alignment dataset reference."
)
TREE_OPTION = typer.Option(None, "--tree", "-t", help="Tree dataset reference.")
GENETIC_CODE_OPTION = typer.Option(
    None, "--genetic-code", help="Genetic code, e.g. Universal."
)
BRANCH_OPTION = typer.Option(
    None, "--branch", "-b", help="Branch selection; repeat for several sets."
)
PARAM_OPTION = typer.Option(
    None,
    "--param",
    "-p",
    help="Additional method option as key=value, e.g. resample=100.",
)


def _parse_params(params: list[str] | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in params or []:
        key, separator, value = item.partition("=")
        key = key.strip().replace("-", "_")
        if not separator or not key:
            raise DmctlValidationError(
                f"Invalid parameter '{item}'. Expected key=value (--param)."
            )
        parsed[key] = value.strip()
    return parsed


def build_request(
    method: str,
    *,
    alignment: str | None,
    tree: str | None,
    genetic_code: str | None,
    branches: list[str] | None,
    params: list[str] | None,
) -> MethodRequest:
    """Validate CLI input into the request model registered for *method*."""

    payload: dict[str, Any] = _parse_params(params)
    if alignment:
        payload["alignment"] = alignment
    if tree:
        payload["tree"] = tree
    if genetic_code:
        payload["genetic_code"] = genetic_code
    if branches:
        payload["branches"] = list(branches)

    model = request_model_for(method)
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}"
            for error in exc.errors()
        )
        raise DmctlValidationError(
            f"Invalid {method} request: {problems}"
        ) from exc


@app.command("start")
def start(
    method: str = METHOD_OPTION,
    alignment: str | None = ALIGNMENT_OPTION,
    tree: str | None = TREE_OPTION,
    genetic_code: str | None = GENETIC_CODE_OPTION,
    branch: list[str] | None = BRANCH_OPTION,
    param: list[str] | None = PARAM_OPTION,
    user: str | None = USER_OPTION,
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
) -> None:
    """Submit an analysis, or report the status of the identical job."""

    method = method.lower()
    request = build_request(
        method,
        alignment=alignment,
        tree=tree,
        genetic_code=genetic_code,
        branches=branch,
        params=param,
    )
    log.info("dmctl.analysis.start", method=method, user=user)
    with open_service(profile, workspace) as service:
        started = service.start_job(request, method, user_id=user)

    typer.secho(f"Job ID: {started['jobId']}", fg=typer.colors.GREEN)
    typer.echo(f"Status: {started['status']}")


@app.command("result")
def result(
    method: str = METHOD_OPTION,
    alignment: str | None = ALIGNMENT_OPTION,
    tree: str | None = TREE_OPTION,
    genetic_code: str | None = GENETIC_CODE_OPTION,
    branch: list[str] | None = BRANCH_OPTION,
    param: list[str] | None = PARAM_OPTION,
    user: str | None = USER_OPTION,
    profile: str | None = PROFILE_OPTION,
    workspace: Path | None = WORKSPACE_OPTION,
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the results JSON to this file."
    ),
) -> None:
    """Print the results of a finished analysis as JSON."""

    method = method.lower()
    request = build_request(
        method,
        alignment=alignment,
        tree=tree,
        genetic_code=genetic_code,
        branches=branch,
        params=param,
    )
    with open_service(profile, workspace) as service:
        payload = service.get_job(request, method, user_id=user)

    serialised = json.dumps(payload, indent=2, sort_keys=True)
    if output is None:
        typer.echo(serialised)
        return
    try:
        output.write_text(serialised, encoding="utf-8")
    except OSError as exc:
        raise DmctlIOError(f"Unable to write results to '{output}': {exc}") from exc
    typer.secho(
        f"Results for job {payload['jobId']} written to {output}",
        fg=typer.colors.GREEN,
    )


__all__ = ["app", "build_request"]
