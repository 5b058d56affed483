"""End-to-end tests for the orchestration facade."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from datamonkey.analysis.datasets import DirectoryDatasetStore
from datamonkey.errors import (
    JobNotCompleteError,
    NotFoundError,
    PermissionDeniedError,
    PollError,
    ResultError,
    ValidationError,
)
from datamonkey.orchestration import AnalysisService, build_service
from datamonkey.config import load_settings
from datamonkey.scheduler import MockScheduler, SlurmScheduler
from datamonkey.tracking import InMemoryJobTracker

from conftest import FakeRunner

FEL_REQUEST = {"alignment": "x.fas"}


@pytest.fixture()
def results_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "results"
    directory.mkdir()
    return directory


@pytest.fixture()
def service(
    slurm: SlurmScheduler,
    tracker: InMemoryJobTracker,
    datasets: DirectoryDatasetStore,
    results_dir: Path,
) -> AnalysisService:
    return AnalysisService(
        slurm, tracker, datasets, hyphy_path="hyphy", results_dir=results_dir
    )


def _write_results(results_dir: Path, job_id: str, payload: str) -> None:
    (results_dir / f"fel_{job_id}_results.json").write_text(payload)


def test_happy_path(
    service: AnalysisService,
    runner: FakeRunner,
    tracker: InMemoryJobTracker,
    results_dir: Path,
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 123456\n")

    started = service.start_job(FEL_REQUEST, "fel")

    job_id = started["jobId"]
    assert started["status"] == "pending"
    assert tracker.get_scheduler_job_id(job_id) == "123456"

    runner.queue("squeue", stdout="RUNNING\n")
    with pytest.raises(JobNotCompleteError) as excinfo:
        service.get_job(FEL_REQUEST, "fel")
    assert excinfo.value.status == "running"

    runner.queue("squeue", stdout="COMPLETED\n")
    _write_results(results_dir, job_id, 'noise {"tested": {"0": "background"}}')

    result = service.get_job(FEL_REQUEST, "fel")

    assert result == {
        "jobId": job_id,
        "status": "complete",
        "results": {"tested": {"0": "background"}},
    }
    with pytest.raises(NotFoundError):
        tracker.get_scheduler_job_id(job_id)
    metadata = tracker.get_job_metadata(job_id)
    assert metadata.method_type == "fel"
    assert metadata.status == "complete"
    assert metadata.alignment_id == "x.fas"


def test_completed_job_is_not_resubmitted(
    service: AnalysisService, runner: FakeRunner, results_dir: Path
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    job_id = service.start_job(FEL_REQUEST, "fel")["jobId"]
    runner.queue("squeue", stdout="COMPLETED")
    _write_results(results_dir, job_id, "{}")
    service.get_job(FEL_REQUEST, "fel")

    again = service.start_job(FEL_REQUEST, "fel")

    assert again == {"jobId": job_id, "status": "complete"}
    assert runner.programs() == ["sbatch", "squeue"]
    assert service.get_job(FEL_REQUEST, "fel")["results"] == {}


def test_running_job_reports_existing_status(
    service: AnalysisService, runner: FakeRunner
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    first = service.start_job(FEL_REQUEST, "fel")
    runner.queue("squeue", stdout="RUNNING")

    second = service.start_job({"alignment": "x.fas", "resample": 0}, "fel")

    assert second == {"jobId": first["jobId"], "status": "running"}
    assert runner.programs().count("sbatch") == 1


def test_failed_job_is_resubmitted(
    service: AnalysisService, runner: FakeRunner, tracker: InMemoryJobTracker
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    job_id = service.start_job(FEL_REQUEST, "fel")["jobId"]
    runner.queue("squeue", stdout="FAILED")
    with pytest.raises(JobNotCompleteError):
        service.get_job(FEL_REQUEST, "fel")

    runner.queue("sbatch", stdout="Submitted batch job 2")
    restarted = service.start_job(FEL_REQUEST, "fel")

    assert restarted == {"jobId": job_id, "status": "pending"}
    assert tracker.get_scheduler_job_id(job_id) == "2"
    assert tracker.get_job_metadata(job_id).status == "pending"


def test_poll_errors_are_not_treated_as_new_jobs(
    service: AnalysisService, runner: FakeRunner, tracker: InMemoryJobTracker
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    service.start_job(FEL_REQUEST, "fel")
    runner.queue("squeue", stderr="slurm_load_jobs error: Socket timed out", returncode=1)

    with pytest.raises(PollError):
        service.start_job(FEL_REQUEST, "fel")

    assert runner.programs() == ["sbatch", "squeue"]


def test_tree_only_method_uses_tree_dataset(
    service: AnalysisService, runner: FakeRunner, data_dir: Path
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 7")

    service.start_job({"tree": "tree.nwk"}, "slatkin")

    assert runner.calls[0][-1] == f"hyphy slatkin --tree {data_dir / 'tree.nwk'}"


def test_alignment_must_be_an_alignment_type(
    service: AnalysisService, runner: FakeRunner
) -> None:
    with pytest.raises(ValidationError, match="Invalid dataset type"):
        service.start_job({"alignment": "tree.nwk"}, "fel")

    assert runner.calls == []


def test_missing_dataset_is_reported(service: AnalysisService) -> None:
    with pytest.raises(NotFoundError):
        service.start_job({"alignment": "missing.fas"}, "fel")


def test_unknown_method_is_a_validation_error(service: AnalysisService) -> None:
    with pytest.raises(ValidationError):
        service.start_job(FEL_REQUEST, "phylo")


def test_missing_results_file_raises_result_error(
    service: AnalysisService, runner: FakeRunner
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    service.start_job(FEL_REQUEST, "fel")
    runner.queue("squeue", stdout="COMPLETED")

    with pytest.raises(ResultError):
        service.get_job(FEL_REQUEST, "fel")


def test_owner_checks(service: AnalysisService, runner: FakeRunner) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    job_id = service.start_job(FEL_REQUEST, "fel", user_id="alice")["jobId"]

    assert service.get_job_by_id(job_id, "alice")["owner"] == "alice"
    with pytest.raises(PermissionDeniedError):
        service.get_job_by_id(job_id, "bob")
    with pytest.raises(PermissionDeniedError):
        service.get_job(FEL_REQUEST, "fel", user_id="bob")
    with pytest.raises(PermissionDeniedError):
        service.cancel_job(job_id, "fel", user_id="bob")
    with pytest.raises(PermissionDeniedError):
        service.delete_job(job_id, user_id="bob")

    assert [summary["jobId"] for summary in service.list_jobs("alice")] == [job_id]
    assert service.list_jobs("bob") == []


def test_cancel_job(
    service: AnalysisService, runner: FakeRunner, tracker: InMemoryJobTracker
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 31")
    job_id = service.start_job(FEL_REQUEST, "fel", user_id="alice")["jobId"]
    runner.queue("scancel")

    summary = service.cancel_job(job_id, "fel", user_id="alice")

    assert summary["status"] == "cancelled"
    assert summary["active"] is False
    assert runner.calls[-1] == ["scancel", "31"]


def test_cancel_job_checks_method(service: AnalysisService, runner: FakeRunner) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 31")
    job_id = service.start_job(FEL_REQUEST, "fel")["jobId"]

    with pytest.raises(ValidationError, match="fel job"):
        service.cancel_job(job_id, "meme")

    assert runner.programs() == ["sbatch"]


def test_delete_job_keeps_metadata(
    service: AnalysisService, runner: FakeRunner, tracker: InMemoryJobTracker
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    job_id = service.start_job(FEL_REQUEST, "fel", user_id="alice")["jobId"]

    service.delete_job(job_id, user_id="alice")

    summary = service.get_job_by_id(job_id)
    assert summary["active"] is False
    assert summary["methodType"] == "fel"


def test_list_jobs_filters(service: AnalysisService, runner: FakeRunner) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    runner.queue("sbatch", stdout="Submitted batch job 2")
    fel_id = service.start_job(FEL_REQUEST, "fel")["jobId"]
    meme_id = service.start_job(FEL_REQUEST, "meme")["jobId"]

    assert [job["jobId"] for job in service.list_jobs(method_type="meme")] == [meme_id]
    assert {job["jobId"] for job in service.list_jobs(status="pending")} == {
        fel_id,
        meme_id,
    }
    assert len(service.list_jobs(limit=1)) == 1
    with pytest.raises(ValidationError):
        service.list_jobs(colour="blue")


def test_results_by_id(
    service: AnalysisService, runner: FakeRunner, results_dir: Path
) -> None:
    runner.queue("sbatch", stdout="Submitted batch job 1")
    job_id = service.start_job(FEL_REQUEST, "fel")["jobId"]
    runner.queue("squeue", stdout="PENDING")

    with pytest.raises(JobNotCompleteError):
        service.get_results_by_id(job_id)

    runner.queue("squeue", stdout="COMPLETED")
    _write_results(results_dir, job_id, json.dumps({"fits": []}))

    assert service.get_results_by_id(job_id)["results"] == {"fits": []}


def test_check_health_delegates(service: AnalysisService, runner: FakeRunner) -> None:
    runner.queue("sinfo", stdout="slurm 23")
    runner.queue("sinfo", stdout="compute,up")

    assert service.check_health().healthy is True


def test_build_service_with_mock_scheduler(tmp_path: Path, data_dir: Path) -> None:
    settings = load_settings(
        project_root=tmp_path,
        overrides={
            "scheduler": "mock",
            "tracker": "memory",
            "data_dir": str(data_dir),
            "results_dir": str(tmp_path / "out"),
        },
    )
    service = build_service(settings)

    started = service.start_job(FEL_REQUEST, "fel")
    for _ in range(3):
        try:
            result = service.get_job(FEL_REQUEST, "fel")
            break
        except JobNotCompleteError:
            continue
    else:  # pragma: no cover - the mock completes on the third poll
        pytest.fail("mock job never completed")

    assert isinstance(service.scheduler, MockScheduler)
    assert result["jobId"] == started["jobId"]
    assert result["results"] == {"job_id": started["jobId"], "mock": True}
