from __future__ import annotations

import shlex
import subprocess

from pytest_mock import MockerFixture

from datamonkey.scheduler.runner import CommandResult, SubprocessRunner


def _completed(stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


def test_prefix_receives_one_quoted_command(mocker: MockerFixture) -> None:
    run = mocker.patch(
        "datamonkey.scheduler.runner.subprocess.run",
        return_value=_completed("RUNNING\n"),
    )

    result = SubprocessRunner(prefix=("ssh", "login1"))(["squeue", "--job", "7"])

    run.assert_called_once_with(
        ["ssh", "login1", "squeue --job 7"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert result == CommandResult(
        args=("ssh", "login1", "squeue --job 7"),
        returncode=0,
        stdout="RUNNING\n",
    )
    assert result.ok


def test_prefixed_wrap_command_survives_remote_splitting(mocker: MockerFixture) -> None:
    run = mocker.patch(
        "datamonkey.scheduler.runner.subprocess.run", return_value=_completed()
    )
    args = ["sbatch", "--output", "/logs/a b.log", "--wrap", "hyphy fel --alignment /data/x.fas"]

    SubprocessRunner(prefix=("ssh", "login1"))(args)

    called = run.call_args.args[0]
    assert called[:2] == ["ssh", "login1"]
    assert len(called) == 3
    assert "--wrap 'hyphy fel --alignment /data/x.fas'" in called[2]
    assert shlex.split(called[2]) == args


def test_without_prefix_arguments_pass_through(mocker: MockerFixture) -> None:
    run = mocker.patch(
        "datamonkey.scheduler.runner.subprocess.run", return_value=_completed()
    )

    SubprocessRunner()(["sbatch", "--wrap", "hyphy fel --alignment /data/x.fas"])

    assert run.call_args.args[0] == [
        "sbatch",
        "--wrap",
        "hyphy fel --alignment /data/x.fas",
    ]


def test_missing_executable_is_reported_as_failure(mocker: MockerFixture) -> None:
    mocker.patch(
        "datamonkey.scheduler.runner.subprocess.run",
        side_effect=FileNotFoundError("sbatch"),
    )

    result = SubprocessRunner()(["sbatch", "--wrap", "true"])

    assert result.returncode == 127
    assert not result.ok
    assert "sbatch" in result.output
