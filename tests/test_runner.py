"""Tests for the external command runner."""

import subprocess
from unittest.mock import MagicMock

import pytest

from gitdeck.errors import CommandError
from gitdeck.runner import CommandResult, CommandRunner


def test_run_returns_result_without_raising(mocker: MagicMock) -> None:
    """A non-zero exit is reported, not raised."""
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value = subprocess.CompletedProcess(
        ["git", "status"], 128, stdout="", stderr="fatal: not a git repository"
    )

    result = CommandRunner().run(["status"])

    assert not result.ok
    assert result.returncode == 128
    assert result.args == ["git", "status"]
    assert "not a git repository" in result.stderr


def test_run_passes_input_and_cwd(mocker: MagicMock, tmp_path) -> None:
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="ok\n", stderr="")

    CommandRunner().run(["apply", "--cached", "-"], cwd=tmp_path, input="patch")

    args, kwargs = mock_run.call_args
    assert args[0] == ["git", "apply", "--cached", "-"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["input"] == "patch"
    assert kwargs["capture_output"] is True
    assert kwargs["text"] is True
    assert kwargs["encoding"] == "utf-8"


def test_check_raises_command_error_with_stderr() -> None:
    result = CommandResult(["git", "checkout", "nope"], 1, "", "error: pathspec 'nope'")

    with pytest.raises(CommandError) as exc_info:
        result.check()

    assert exc_info.value.command == ["git", "checkout", "nope"]
    assert exc_info.value.stderr == "error: pathspec 'nope'"
    assert exc_info.value.returncode == 1


def test_check_returns_self_on_success() -> None:
    result = CommandResult(["git", "status"], 0, "clean", "")
    assert result.check() is result


def test_missing_executable_reports_127(mocker: MagicMock) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("no such file: git"))

    result = CommandRunner().run(["status"])

    assert result.returncode == 127
    with pytest.raises(CommandError):
        result.check()


def test_timeout_is_reported_as_failure(mocker: MagicMock) -> None:
    mocker.patch(
        "subprocess.run", side_effect=subprocess.TimeoutExpired(["git", "fetch"], 5)
    )

    result = CommandRunner(timeout=5).run(["fetch"])

    assert result.returncode == -1
    assert "timed out" in result.stderr
