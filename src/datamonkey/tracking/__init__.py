"""Persistence of job mappings, ownership and metadata."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from datamonkey.errors import ConfigurationError
from datamonkey.tracking.base import (
    FILTER_KEYS,
    JobMetadata,
    JobRecord,
    JobTracker,
    RecordJobTracker,
)
from datamonkey.tracking.json_store import JsonJobTracker
from datamonkey.tracking.memory import InMemoryJobTracker
from datamonkey.tracking.sqlite import SQLiteJobTracker

if TYPE_CHECKING:
    from datamonkey.config import Settings

TRACKER_BACKENDS: tuple[str, ...] = ("memory", "json", "sqlite")


def build_tracker(settings: "Settings") -> JobTracker:
    """Instantiate the tracker backend selected by *settings*."""

    backend = settings.tracker
    if backend == "memory":
        return InMemoryJobTracker()
    path = settings.tracker_path
    if backend == "json":
        return JsonJobTracker(path or Path("jobs.json"))
    if backend == "sqlite":
        return SQLiteJobTracker(path or Path("jobs.db"))
    raise ConfigurationError(
        f"Unknown job tracker backend '{backend}'.",
        hint=f"Choose one of: {', '.join(TRACKER_BACKENDS)}.",
    )


__all__ = [
    "FILTER_KEYS",
    "InMemoryJobTracker",
    "JobMetadata",
    "JobRecord",
    "JobTracker",
    "JsonJobTracker",
    "RecordJobTracker",
    "SQLiteJobTracker",
    "TRACKER_BACKENDS",
    "build_tracker",
]
