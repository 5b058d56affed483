"""Tests for job identity, validation and status delegation."""

from __future__ import annotations

from typing import Any

import pytest

from datamonkey.analysis.methods import HyPhyMethod
from datamonkey.errors import InvalidJobError, PollError
from datamonkey.jobs import AnalysisJob, BaseJob, JobStatus, job_id_for_command, new_job
from datamonkey.scheduler import MockScheduler
from datamonkey.tracking import InMemoryJobTracker


class _StubScheduler:
    name = "stub"

    def __init__(self, status: JobStatus | None = None, error: Exception | None = None):
        self.status = status
        self.error = error
        self.seen: list[Any] = []

    def submit(self, job: Any) -> None:  # pragma: no cover - unused
        raise NotImplementedError

    def cancel(self, job: Any) -> None:  # pragma: no cover - unused
        raise NotImplementedError

    def get_status(self, job: Any) -> JobStatus:
        self.seen.append(job)
        if self.error is not None:
            raise self.error
        assert self.status is not None
        return self.status

    def check_health(self) -> Any:  # pragma: no cover - unused
        raise NotImplementedError


def _method(request: dict[str, Any]) -> HyPhyMethod:
    return HyPhyMethod(request, "fel", data_dir="/data", results_dir="/results")


def test_equivalent_requests_share_one_identity() -> None:
    first = {"alignment": "x.fas", "resample": 0}
    second = {"alignment": "x.fas", "rates": 0, "multiple_hits": ""}

    job_one = new_job(first, _method(first), None)
    job_two = new_job(second, _method(second), None)

    assert job_one.id == job_two.id
    assert job_one.id == job_id_for_command("hyphy fel --alignment /data/x.fas")


def test_different_commands_produce_different_ids() -> None:
    first = {"alignment": "x.fas"}
    second = {"alignment": "x.fas", "ci": True}

    assert new_job(first, _method(first), None).id != new_job(
        second, _method(second), None
    ).id


def test_new_job_derives_paths_and_datasets() -> None:
    request = {"alignment": "x.fas", "tree": "tree.nwk"}

    job = new_job(request, _method(request), None, user_id="alice")

    assert job.base.alignment_id == "x.fas"
    assert job.base.tree_id == "tree.nwk"
    assert job.base.user_id == "alice"
    assert job.base.output_path == f"/results/fel_{job.id}_results.json"
    assert job.base.log_path == f"/results/fel_{job.id}.log"


def _valid_job(**overrides: Any) -> BaseJob:
    request = {"alignment": "x.fas"}
    values: dict[str, Any] = {
        "id": "job-1",
        "alignment_id": "x.fas",
        "scheduler": MockScheduler(InMemoryJobTracker()),
        "method": _method(request),
        "log_path": "/results/job-1.log",
    }
    values.update(overrides)
    return BaseJob(**values)


def test_valid_job_passes_validation() -> None:
    _valid_job().validate()


@pytest.mark.parametrize(
    "overrides",
    [
        {"id": ""},
        {"alignment_id": "", "tree_id": ""},
        {"log_path": ""},
        {"scheduler": None},
        {"method": None},
    ],
    ids=["id", "datasets", "log-path", "scheduler", "method"],
)
def test_each_missing_field_fails_validation(overrides: dict[str, Any]) -> None:
    with pytest.raises(InvalidJobError) as excinfo:
        _valid_job(**overrides).validate()

    assert str(excinfo.value)


def test_validation_messages_are_distinct() -> None:
    messages = set()
    for overrides in (
        {"alignment_id": ""},
        {"log_path": ""},
        {"scheduler": None},
        {"method": None},
    ):
        with pytest.raises(InvalidJobError) as excinfo:
            _valid_job(**overrides).validate()
        messages.add(str(excinfo.value))

    assert len(messages) == 4


def test_analysis_job_requires_request() -> None:
    job = AnalysisJob(base=_valid_job(), request=None)

    with pytest.raises(InvalidJobError, match="request"):
        job.validate()


def test_get_status_delegates_to_scheduler() -> None:
    scheduler = _StubScheduler(status=JobStatus.RUNNING)
    job = AnalysisJob(base=_valid_job(scheduler=scheduler))

    result = job.get_status()

    assert result.ok
    assert result.status is JobStatus.RUNNING
    assert scheduler.seen == [job]


def test_get_status_reports_scheduler_errors() -> None:
    error = PollError("squeue unavailable")
    job = _valid_job(scheduler=_StubScheduler(error=error))

    result = job.get_status()

    assert not result.ok
    assert result.status is JobStatus.FAILED
    assert result.error is error
    with pytest.raises(PollError):
        result.unwrap()


def test_get_status_without_scheduler_is_an_error() -> None:
    result = _valid_job(scheduler=None).get_status()

    assert isinstance(result.error, InvalidJobError)


def test_terminal_statuses() -> None:
    assert JobStatus.COMPLETE.is_terminal
    assert JobStatus.CANCELLED.is_terminal
    assert not JobStatus.RUNNING.is_terminal
    assert str(JobStatus.PENDING) == "pending"
