"""Regression tests for the dmctl Typer CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from apps.dmctl.app import app

runner = CliRunner()

pytestmark = pytest.mark.usefixtures("cli_workspace")


def _start(*args: str) -> str:
    result = runner.invoke(app, ["analysis", "start", *args])
    assert result.exit_code == 0, result.output
    first_line = result.output.splitlines()[0]
    assert first_line.startswith("Job ID: ")
    return first_line.removeprefix("Job ID: ")


def test_methods_list_marks_tree_only_methods() -> None:
    result = runner.invoke(app, ["methods", "list"])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert any(line.startswith("fel") for line in lines)
    slatkin = next(line for line in lines if line.startswith("slatkin"))
    assert slatkin.endswith("(tree only)")


def test_start_then_fetch_results() -> None:
    result = runner.invoke(app, ["analysis", "start", "-m", "fel", "-a", "x.fas"])

    assert result.exit_code == 0, result.output
    assert "Status: pending" in result.output
    job_id = result.output.splitlines()[0].removeprefix("Job ID: ")

    # A fresh process no longer knows the mock job, so it reports complete.
    again = runner.invoke(app, ["analysis", "start", "-m", "FEL", "-a", "x.fas"])
    assert again.exit_code == 0, again.output
    assert f"Job ID: {job_id}" in again.output
    assert "Status: complete" in again.output

    fetched = runner.invoke(app, ["analysis", "result", "-m", "fel", "-a", "x.fas"])
    assert fetched.exit_code == 0, fetched.output
    payload = json.loads(fetched.output)
    assert payload["jobId"] == job_id
    assert payload["status"] == "complete"
    assert payload["results"] == {"job_id": job_id, "mock": True}


def test_result_written_to_file(cli_workspace: Path) -> None:
    _start("-m", "meme", "-a", "x.fas", "-p", "resample=50")
    destination = cli_workspace / "meme.json"

    result = runner.invoke(
        app,
        [
            "analysis",
            "result",
            "-m",
            "meme",
            "-a",
            "x.fas",
            "--param",
            "resample=50",
            "-o",
            str(destination),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "written to" in result.output
    assert json.loads(destination.read_text())["status"] == "complete"


def test_distinct_options_are_distinct_jobs() -> None:
    first = _start("-m", "fel", "-a", "x.fas")
    second = _start("-m", "fel", "-a", "x.fas", "--param", "ci=Yes")

    assert first != second


def test_jobs_list_filters_and_json() -> None:
    fel_id = _start("-m", "fel", "-a", "x.fas", "--user", "alice")
    slatkin_id = _start("-m", "slatkin", "-t", "tree.nwk")

    listed = runner.invoke(app, ["jobs", "list", "--json"])
    assert listed.exit_code == 0, listed.output
    assert {job["jobId"] for job in json.loads(listed.output)} == {fel_id, slatkin_id}

    mine = runner.invoke(app, ["jobs", "list", "--user", "alice", "--json"])
    assert [job["jobId"] for job in json.loads(mine.output)] == [fel_id]

    trees = runner.invoke(app, ["jobs", "list", "--method", "slatkin"])
    assert trees.exit_code == 0
    assert slatkin_id[:16] in trees.output
    assert fel_id[:16] not in trees.output


def test_jobs_list_without_jobs() -> None:
    result = runner.invoke(app, ["jobs", "list"])

    assert result.exit_code == 0
    assert "No jobs found." in result.output


def test_jobs_show_and_delete() -> None:
    job_id = _start("-m", "fel", "-a", "x.fas", "--user", "alice")

    shown = runner.invoke(app, ["jobs", "show", job_id])
    assert shown.exit_code == 0, shown.output
    summary = json.loads(shown.output)
    assert summary["owner"] == "alice"
    assert summary["active"] is True

    deleted = runner.invoke(app, ["jobs", "delete", job_id, "--user", "alice"])
    assert deleted.exit_code == 0, deleted.output
    assert f"Deleted mapping for job {job_id}." in deleted.output

    shown = runner.invoke(app, ["jobs", "show", job_id])
    assert json.loads(shown.output)["active"] is False


def test_jobs_refresh_updates_active_jobs() -> None:
    job_id = _start("-m", "fel", "-a", "x.fas")

    result = runner.invoke(app, ["jobs", "refresh"])

    assert result.exit_code == 0, result.output
    assert "Updated 1 job(s)." in result.output
    shown = runner.invoke(app, ["jobs", "show", job_id])
    assert json.loads(shown.output)["status"] == "complete"

    results = runner.invoke(app, ["jobs", "results", job_id])
    assert results.exit_code == 0, results.output
    assert json.loads(results.output)["results"]["mock"] is True


def test_scheduler_health() -> None:
    result = runner.invoke(app, ["scheduler", "health"])

    assert result.exit_code == 0
    assert "mock: Mock scheduler is operational" in result.output


def test_logs_stay_off_stdout() -> None:
    result = runner.invoke(app, ["-vv", "jobs", "list", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == []
