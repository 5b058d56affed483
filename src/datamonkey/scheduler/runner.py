"""Subprocess execution for command line scheduler backends."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol, Sequence

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Standard output followed by standard error."""

        return f"{self.stdout}{self.stderr}"


class CommandRunner(Protocol):
    def __call__(self, args: Sequence[str]) -> CommandResult: ...


class SubprocessRunner:
    """Run commands locally, optionally behind a prefix such as ``ssh host``.

    A prefix receives the command as one shell-quoted argument, since remote
    shells re-split whatever they are given.
    """

    def __init__(self, prefix: Sequence[str] = ()) -> None:
        self.prefix = tuple(prefix)

    def __call__(self, args: Sequence[str]) -> CommandResult:
        if self.prefix:
            command = (*self.prefix, shlex.join(args))
        else:
            command = tuple(args)
        log.debug("scheduler.command.run", command=list(command))
        try:
            completed = subprocess.run(
                list(command),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            log.warning(
                "scheduler.command.unavailable", command=list(command), error=str(exc)
            )
            return CommandResult(args=command, returncode=127, stderr=str(exc))
        return CommandResult(
            args=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


__all__ = ["CommandResult", "CommandRunner", "SubprocessRunner"]
