"""Shared pytest fixtures for the job orchestration tests."""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Union

import pytest

from datamonkey.analysis.datasets import DirectoryDatasetStore
from datamonkey.scheduler.runner import CommandResult
from datamonkey.scheduler.slurm import SlurmConfig, SlurmScheduler
from datamonkey.tracking import InMemoryJobTracker

Response = Union[CommandResult, Callable[[Sequence[str]], CommandResult]]


class FakeRunner:
    """Command runner returning queued responses per executable."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._responses: dict[str, deque[Response]] = defaultdict(deque)

    def queue(
        self,
        program: str,
        *,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> None:
        self._responses[program].append(
            lambda args: CommandResult(
                args=tuple(args), returncode=returncode, stdout=stdout, stderr=stderr
            )
        )

    def programs(self) -> list[str]:
        return [call[0] for call in self.calls]

    def __call__(self, args: Sequence[str]) -> CommandResult:
        self.calls.append(list(args))
        pending = self._responses.get(args[0])
        if not pending:
            raise AssertionError(f"Unexpected command: {list(args)}")
        response = pending.popleft()
        if callable(response):
            return response(args)
        return response


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def tracker() -> Iterator[InMemoryJobTracker]:
    store = InMemoryJobTracker()
    yield store
    store.close()


@pytest.fixture()
def slurm(runner: FakeRunner, tracker: InMemoryJobTracker) -> SlurmScheduler:
    return SlurmScheduler(SlurmConfig(partition="compute"), tracker, runner=runner)


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "x.fas").write_text(">human\nATGAAACCC\n>chimp\nATGAAACCT\n")
    (directory / "tree.nwk").write_text("(human,chimp);\n")
    return directory


@pytest.fixture()
def datasets(data_dir: Path) -> DirectoryDatasetStore:
    return DirectoryDatasetStore(data_dir)


@pytest.fixture()
def cli_workspace(
    tmp_path: Path, data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> Path:
    """Point dmctl at a mock scheduler and a JSON job store under *tmp_path*."""

    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("DATAMONKEY_PROFILE", raising=False)
    monkeypatch.delenv("DATAMONKEY_PROJECT_ROOT", raising=False)
    monkeypatch.delenv("DATAMONKEY_SLURM_PARTITION", raising=False)
    monkeypatch.delenv("DATAMONKEY_HYPHY_PATH", raising=False)
    monkeypatch.setenv("DATAMONKEY_SCHEDULER", "mock")
    monkeypatch.setenv("DATAMONKEY_TRACKER", "json")
    monkeypatch.setenv("DATAMONKEY_TRACKER_PATH", str(tmp_path / "jobs.json"))
    monkeypatch.setenv("DATAMONKEY_DATA_DIR", str(data_dir))
    monkeypatch.setenv("DATAMONKEY_RESULTS_DIR", str(tmp_path / "results"))
    monkeypatch.chdir(tmp_path)
    return tmp_path
