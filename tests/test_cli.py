"""Tests for the Command Line Interface (CLI) module."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from gitdeck import cli
from gitdeck.errors import CommandError, PatchApplyError
from gitdeck.models import (
    AutoStashResult,
    Branch,
    DiffHunk,
    DiffLine,
    FileState,
    FileStatus,
    LineKind,
    Reference,
    RepositoryStatus,
)

HUNK = DiffHunk(
    1,
    1,
    1,
    2,
    (DiffLine(LineKind.CONTEXT, "a"), DiffLine(LineKind.ADDITION, "b")),
)


@pytest.fixture(autouse=True)
def wide_console(mocker: MagicMock) -> None:
    """Keeps rich from wrapping long messages mid-assertion."""
    mocker.patch("gitdeck.cli.console", Console(width=200))


@pytest.fixture
def orchestrator(mocker: MagicMock) -> MagicMock:
    """Replaces the orchestrator the CLI opens with a mock."""
    mock_cls = mocker.patch("gitdeck.cli.RepositoryOrchestrator")
    mocker.patch("gitdeck.cli.setup_logging")
    return mock_cls.return_value


def run_cli(mocker: MagicMock, *args: str) -> None:
    mocker.patch.object(sys, "argv", ["gitdeck", *args])
    cli.main()


def test_show_status_lists_each_area(capsys: pytest.CaptureFixture) -> None:
    """Verifies that `show_status` prints staged, unstaged and untracked files.

    Args:
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
    """
    orch = MagicMock()
    orch.get_head.return_value = Reference("main", "a" * 40)
    orch.get_status.return_value = RepositoryStatus(
        staged=(FileStatus("ready.py", FileState.ADDED),),
        unstaged=(FileStatus("wip.py", FileState.MODIFIED),),
        untracked=("notes.txt",),
    )

    cli.show_status(orch)

    out = capsys.readouterr().out
    assert "On branch main" in out
    assert "ready.py" in out
    assert "wip.py" in out
    assert "notes.txt" in out


def test_show_status_clean_tree(capsys: pytest.CaptureFixture) -> None:
    orch = MagicMock()
    orch.get_head.return_value = Reference(
        "abc1234", "abc1234" + "0" * 33, detached=True
    )
    orch.get_status.return_value = RepositoryStatus()

    cli.show_status(orch)

    out = capsys.readouterr().out
    assert "Detached at abc1234" in out
    assert "Working tree clean" in out


def test_branches_command(
    mocker: MagicMock, orchestrator: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    orchestrator.get_branches.return_value = (
        Branch("main", "a" * 40, is_head=True, upstream="origin/main", ahead=1),
    )
    orchestrator.get_remote_branches.return_value = ()

    run_cli(mocker, "--repo", "/work/repo", "branches")

    orchestrator.open.assert_called_once_with(Path("/work/repo"))
    out = capsys.readouterr().out
    assert "main" in out
    assert "+1/-0" in out
    orchestrator.close.assert_called_once()


def test_stage_line_uses_one_based_numbers(
    mocker: MagicMock, orchestrator: MagicMock
) -> None:
    orchestrator.get_hunks.return_value = [HUNK]

    run_cli(mocker, "stage-line", "a.txt", "1", "2")

    orchestrator.get_hunks.assert_called_once_with("a.txt", staged=False)
    orchestrator.stage_line.assert_called_once_with("a.txt", HUNK, 1)


def test_unstage_hunk_reads_staged_hunks(
    mocker: MagicMock, orchestrator: MagicMock
) -> None:
    orchestrator.get_hunks.return_value = [HUNK]

    run_cli(mocker, "unstage-hunk", "a.txt", "1")

    orchestrator.get_hunks.assert_called_once_with("a.txt", staged=True)
    orchestrator.unstage_hunk.assert_called_once_with("a.txt", HUNK)


def test_hunk_out_of_range_exits_with_error(
    mocker: MagicMock, orchestrator: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    orchestrator.get_hunks.return_value = [HUNK]

    with pytest.raises(SystemExit) as exc_info:
        run_cli(mocker, "discard-hunk", "a.txt", "3")

    assert exc_info.value.code == 1
    assert "Hunk 3 out of range" in capsys.readouterr().out
    orchestrator.discard_hunk.assert_not_called()


def test_rejected_patch_prints_hint(
    mocker: MagicMock, orchestrator: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    orchestrator.get_hunks.return_value = [HUNK]
    orchestrator.stage_hunk.side_effect = PatchApplyError(
        ["git", "apply"], "error: patch failed: a.txt:1"
    )

    with pytest.raises(SystemExit):
        run_cli(mocker, "stage-hunk", "a.txt", "1")

    out = capsys.readouterr().out
    assert "patch failed" in out
    assert "Refresh and try again" in out


def test_pull_prints_result_message(
    mocker: MagicMock, orchestrator: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    orchestrator.pull_with_auto_stash.return_value = AutoStashResult(
        had_local_changes=True, did_stash=True, stash_applied=False, stash_conflict=True
    )

    run_cli(mocker, "pull", "--rebase")

    orchestrator.pull_with_auto_stash.assert_called_once_with(rebase=True)
    assert "saved in the stash list" in capsys.readouterr().out


def test_git_failure_exits_with_status_one(
    mocker: MagicMock, orchestrator: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    orchestrator.get_tags.side_effect = CommandError(
        ["git", "for-each-ref"], "fatal: bad object"
    )

    with pytest.raises(SystemExit) as exc_info:
        run_cli(mocker, "tags")

    assert exc_info.value.code == 1
    assert "bad object" in capsys.readouterr().out


def test_config_command_shows_effective_values(
    mocker: MagicMock, tmp_path: Path, capsys: pytest.CaptureFixture
) -> None:
    mocker.patch("gitdeck.cli.setup_logging")
    mocker.patch("gitdeck.config.CONFIG_FILE", tmp_path / "missing.toml")
    (tmp_path / "gitdeck.toml").write_text("[history]\nmax_undo = 7\n")

    run_cli(mocker, "--repo", str(tmp_path), "config")

    out = capsys.readouterr().out
    assert "max_undo" in out
    assert "7" in out
