"""Shared fixtures for the test suite."""

import shutil
import subprocess
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from gitdeck.config import Config


def run_git(repo: Path, *args: str) -> str:
    """Runs git in `repo` and returns stdout, failing the test on error."""
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return result.stdout


@pytest.fixture(autouse=True)
def clear_config_cache() -> Iterator[None]:
    """Ensures every test starts with a clean config cache."""
    Config.reset_cache()
    yield
    Config.reset_cache()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A real repository with one commit of `file.txt` containing lines 1..5."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "commit.gpgsign", "false")
    run_git(repo, "config", "core.autocrlf", "false")
    (repo / "file.txt").write_text("1\n2\n3\n4\n5\n")
    run_git(repo, "add", "file.txt")
    run_git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture(name="git")
def git_fixture() -> Callable[..., str]:
    """The `run_git` helper, for tests that inspect a real repository."""
    return run_git
