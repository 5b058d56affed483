"""Shared option declarations and service wiring for dmctl commands."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog
import typer

from datamonkey.config import Settings, load_settings
from datamonkey.errors import DatamonkeyError
from datamonkey.orchestration import AnalysisService, build_service

from apps.dmctl.utils.errors import translate_error

log = structlog.get_logger(__name__)

PROFILE_OPTION = typer.Option(
    None,
    "--profile",
    help="Configuration profile to load (defaults to DATAMONKEY_PROFILE).",
)
WORKSPACE_OPTION = typer.Option(
    None,
    "--workspace",
    help="Directory whose datamonkey.toml overrides user and project settings.",
)
USER_OPTION = typer.Option(
    None,
    "--user",
    help="Act on behalf of this user; jobs owned by others are rejected.",
)


def resolve_settings(profile: str | None, workspace: Path | None = None) -> Settings:
    try:
        return load_settings(profile=profile, workspace=workspace)
    except DatamonkeyError as exc:
        raise translate_error(exc) from exc


@contextmanager
def open_service(
    profile: str | None, workspace: Path | None = None
) -> Iterator[AnalysisService]:
    """Yield a wired :class:`AnalysisService`, closing its tracker afterwards.

    Core errors raised inside the block are re-raised as CLI errors.
    """

    settings = resolve_settings(profile, workspace)
    try:
        service = build_service(settings)
    except DatamonkeyError as exc:
        raise translate_error(exc) from exc
    log.debug(
        "dmctl.service.ready",
        scheduler=settings.scheduler,
        tracker=settings.tracker,
    )
    try:
        yield service
    except DatamonkeyError as exc:
        raise translate_error(exc) from exc
    finally:
        service.tracker.close()


__all__ = [
    "PROFILE_OPTION",
    "USER_OPTION",
    "WORKSPACE_OPTION",
    "open_service",
    "resolve_settings",
]
