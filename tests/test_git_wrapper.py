import inspect
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gitdeck.errors import CommandError, NotARepositoryError, PatchApplyError
from gitdeck.git_wrapper import DIFF_ARGS, GitRepo
from gitdeck.models import FileState, ResetMode
from gitdeck.runner import CommandResult


def make_repo(tmp_path: Path) -> GitRepo:
    # Create a fake .git directory so GitRepo accepts the path
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_rejects_paths_without_git_dir(tmp_path: Path) -> None:
    with pytest.raises(NotARepositoryError):
        GitRepo(tmp_path)


def test_run_raises_command_error_with_stderr(
    mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies that git failures surface the argv and stderr verbatim."""
    repo = make_repo(tmp_path)
    mocker.patch.object(
        repo.runner,
        "run",
        return_value=CommandResult(
            ["git", "checkout", "nope"], 1, "", "error: pathspec 'nope'"
        ),
    )

    with pytest.raises(CommandError) as exc_info:
        repo.checkout("nope")

    assert exc_info.value.command == ["git", "checkout", "nope"]
    assert exc_info.value.stderr == "error: pathspec 'nope'"


def test_status_parses_porcelain_z(mocker: MagicMock, tmp_path: Path) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "M  staged.py\x00"
        " M unstaged.py\x00"
        "MM both.py\x00"
        "R  new name.py\x00old name.py\x00"
        "?? untracked.txt\x00"
        "UU conflict.py\x00"
    )

    status = repo.status()

    assert [(f.path, f.state) for f in status.staged] == [
        ("staged.py", FileState.MODIFIED),
        ("both.py", FileState.MODIFIED),
        ("new name.py", FileState.RENAMED),
    ]
    assert status.staged[2].orig_path == "old name.py"
    assert [f.path for f in status.unstaged] == ["unstaged.py", "both.py"]
    assert status.untracked == ("untracked.txt",)
    assert [f.path for f in status.conflicted] == ["conflict.py"]
    assert not status.is_clean


def test_branches_parse_tracking_info(mocker: MagicMock, tmp_path: Path) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "main\x00aaa\x00*\x00origin/main\x00[ahead 2, behind 1]\x1e\n"
        "feature|x\x00bbb\x00 \x00\x00\x1e\n"
    )

    main, feature = repo.branches()

    assert main.is_head and main.upstream == "origin/main"
    assert (main.ahead, main.behind) == (2, 1)
    # A '|' in a branch name must not break parsing.
    assert feature.name == "feature|x"
    assert feature.upstream is None and not feature.is_head


def test_remote_branches_skip_symbolic_head(mocker: MagicMock, tmp_path: Path) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "origin/HEAD\x00aaa\x1e\n"
        "origin\x00aaa\x1e\n"
        "origin/main\x00aaa\x1e\n"
    )

    (branch,) = repo.remote_branches()

    assert branch.name == "origin/main"
    assert branch.remote_name == "origin"
    assert branch.full_name == "refs/remotes/origin/main"


def test_tags_distinguish_annotated(mocker: MagicMock, tmp_path: Path) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "v2\x00tagobj\x00tag\x00commit2\x00Ann\x002024-01-02 10:00:00 +0000\x1e\n"
        "v1\x00commit1\x00commit\x00\x00\x00\x1e\n"
    )

    v2, v1 = repo.tags()

    assert v2.is_annotated and v2.sha == "commit2" and v2.tagger == "Ann"
    assert v2.date is not None and v2.date.year == 2024
    assert not v1.is_annotated and v1.sha == "commit1" and v1.date is None


def test_remotes_merge_fetch_and_push_urls(mocker: MagicMock, tmp_path: Path) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "origin\tgit@example.com:a.git (fetch)\n"
        "origin\tgit@example.com:a-push.git (push)\n"
        "backup\thttps://example.com/b.git (fetch)\n"
        "backup\thttps://example.com/b.git (push)\n"
    )

    backup, origin = repo.remotes()

    assert origin.fetch_url == "git@example.com:a.git"
    assert origin.push_url == "git@example.com:a-push.git"
    assert backup.name == "backup"


def test_stashes_are_indexed_by_position(mocker: MagicMock, tmp_path: Path) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "stash@{0}\x00s0\x00On main: wip\x002024-03-01 09:30:00 +0100\x1e\n"
        "stash@{1}\x00s1\x00WIP on main: abc fix\x002024-02-01 09:30:00 +0100\x1e\n"
    )

    top, older = repo.stashes()

    assert (top.index, top.ref, top.message) == (0, "stash@{0}", "On main: wip")
    assert older.ref == "stash@{1}"


def test_stash_returns_none_when_nothing_saved(
    mocker: MagicMock, tmp_path: Path
) -> None:
    repo = make_repo(tmp_path)
    mocker.patch.object(repo, "_run", return_value="No local changes to save")
    mocker.patch.object(repo, "rev_parse", return_value="same")

    assert repo.stash("msg") is None


def test_apply_patch_builds_flags_and_raises_distinct_error(
    mocker: MagicMock, tmp_path: Path
) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo.runner, "run")
    mock_run.return_value = CommandResult(
        ["git", "apply"], 1, "", "error: patch failed"
    )

    with pytest.raises(PatchApplyError, match="patch failed"):
        repo.apply_patch("diff", cached=True, reverse=True, unidiff_zero=True)

    args, kwargs = mock_run.call_args
    assert args[0] == [
        "apply",
        "--whitespace=nowarn",
        "--cached",
        "--reverse",
        "--unidiff-zero",
        "-",
    ]
    assert kwargs["input"] == "diff"


@pytest.mark.parametrize(
    ("action", "expected"),
    [
        (lambda r: r.reset("HEAD~1", ResetMode.HARD), ["reset", "--hard", "HEAD~1"]),
        (lambda r: r.merge("dev", no_ff=True), ["merge", "--no-ff", "dev"]),
        (lambda r: r.revert(["abc"]), ["revert", "--no-edit", "abc"]),
        (lambda r: r.delete_branch("old", force=True), ["branch", "-D", "old"]),
        (lambda r: r.pull(rebase=True), ["pull", "--rebase"]),
        (
            lambda r: r.push("origin", "main", force=True),
            ["push", "--force-with-lease", "origin", "main"],
        ),
        (lambda r: r.fetch(), ["fetch", "--prune", "--all"]),
        (lambda r: r.discard_changes(["a.py"]), ["checkout", "--", "a.py"]),
        (lambda r: r.stash_pop(), ["stash", "pop", "stash@{0}"]),
    ],
)
def test_commands_are_built_correctly(
    mocker: MagicMock,
    tmp_path: Path,
    action: Callable[[GitRepo], object],
    expected: list[str],
) -> None:
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")

    action(repo)

    mock_run.assert_called_with(expected)


def test_diff_with_file_targeting(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that diff appends the file boundary double-dash and keeps whitespace."""
    repo = make_repo(tmp_path)
    mock_run = mocker.patch.object(repo, "_run")

    repo.diff("src/main.py", staged=True)

    mock_run.assert_called_with(
        [*DIFF_ARGS, "--cached", "--", "src/main.py"], strip=False
    )


def test_diff_pins_prefixes_and_path_quoting() -> None:
    """User settings such as diff.noprefix cannot change the paths git prints."""
    assert DIFF_ARGS[:2] == ["-c", "core.quotePath=off"]
    assert "--src-prefix=a/" in DIFF_ARGS
    assert "--dst-prefix=b/" in DIFF_ARGS


def test_real_repository_round_trip(git_repo: Path) -> None:
    """Reads branch, status and tags from a real repository."""
    repo = GitRepo.open(git_repo / ".")
    head = repo.head()
    assert head is not None and not head.detached

    (git_repo / "file.txt").write_text("changed\n")
    (git_repo / "new.txt").write_text("new\n")
    status = repo.status()
    assert [f.path for f in status.unstaged] == ["file.txt"]
    assert status.untracked == ("new.txt",)

    tag = repo.create_tag("v1.0", message="Release")
    assert tag.is_annotated
    assert [t.name for t in repo.tags()] == ["v1.0"]
    assert [b.name for b in repo.branches()] == [head.name]


def test_real_diff_ignores_user_prefix_settings(git_repo: Path, git: Callable) -> None:
    """A repository with diff.noprefix still yields plain paths."""
    git(git_repo, "config", "diff.noprefix", "true")
    git(git_repo, "config", "diff.mnemonicPrefix", "true")
    (git_repo / "file.txt").write_text("1\n2\nthree\n4\n5\n")

    files = GitRepo.open(git_repo).diff_hunks("file.txt")

    assert [f.path for f in files] == ["file.txt"]
    assert files[0].old_path is None


def test_real_diff_keeps_non_ascii_paths(git_repo: Path, git: Callable) -> None:
    """Non-ASCII file names come back as the same characters."""
    git(git_repo, "config", "core.quotePath", "true")
    (git_repo / "café.txt").write_text("a\n", encoding="utf-8")
    git(git_repo, "add", "café.txt")
    git(git_repo, "commit", "-q", "-m", "add café")
    (git_repo / "café.txt").write_text("a\nb\n", encoding="utf-8")

    files = GitRepo.open(git_repo).diff_hunks()

    assert [f.path for f in files] == ["café.txt"]
    assert [line.content for line in files[0].hunks[0].lines] == ["a", "b"]


def test_public_methods_are_documented() -> None:
    undocumented = [
        name
        for name, member in inspect.getmembers(GitRepo)
        if not name.startswith("_")
        and callable(getattr(member, "__func__", member))
        and not inspect.getdoc(member)
    ]
    assert undocumented == []
