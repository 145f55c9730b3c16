"""Tests for the configuration management subsystem."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gitdeck.config import Config, parse_size, parse_time
from gitdeck.constants import DEFAULT_WORKTREE_EXCLUDES


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with sensible defaults."""
    conf = Config()
    assert conf.cache.branches == 30
    assert conf.cache.remote_branches == 60
    assert conf.cache.tags == 120
    assert conf.cache.remotes == 300
    assert conf.cache.stashes == 30
    assert conf.cache.status == 5
    assert conf.cache.head == 10
    assert conf.watcher.debounce == pytest.approx(0.3)
    assert conf.watcher.exclude == DEFAULT_WORKTREE_EXCLUDES
    assert conf.history.max_undo == 50


def test_config_load_merges_layers(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies the cascading merge logic (Defaults -> Global -> Local).

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    # 1. Setup Global Config (Real File in tmp_path)
    global_config_path = tmp_path / "global_config.toml"
    global_config_path.write_text(
        '[cache]\nbranches = "1m"\nstatus = 2\n'
        '[watcher]\nexclude = ["generated"]\n'
    )

    # 2. Setup Local Config (Real file in tmp_path)
    local_toml = tmp_path / "gitdeck.toml"
    local_toml.write_text(
        '[cache]\nstatus = "500ms"\n[watcher]\nexclude = ["tmp"]\n'  # Should append
    )

    # Point the global CONFIG_FILE constant to our real temporary file
    mocker.patch("gitdeck.config.CONFIG_FILE", global_config_path)

    # 3. Load Config (specifying tmp_path as the repo root)
    conf = Config.load(repo_path=tmp_path)

    # 4. Assertions
    assert conf.cache.branches == 60  # From Global
    assert conf.cache.status == pytest.approx(0.5)  # Local overrides Global
    assert "generated" in conf.watcher.exclude  # From Global
    assert "tmp" in conf.watcher.exclude  # From Local (Appended)
    assert "node_modules" in conf.watcher.exclude  # Defaults kept


def test_local_merge_does_not_leak_into_global_cache(
    tmp_path: Path, mocker: MagicMock
) -> None:
    mocker.patch("gitdeck.config.CONFIG_FILE", tmp_path / "missing.toml")
    repo_a = tmp_path / "a"
    repo_a.mkdir()
    (repo_a / "gitdeck.toml").write_text('[watcher]\nexclude = ["only-a"]\n')
    repo_b = tmp_path / "b"
    repo_b.mkdir()

    assert "only-a" in Config.load(repo_a).watcher.exclude
    assert "only-a" not in Config.load(repo_b).watcher.exclude


def test_config_load_from_pyproject(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that configuration can be loaded from pyproject.toml."""
    mocker.patch("gitdeck.config.CONFIG_FILE", tmp_path / "missing.toml")
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(
        '[tool.gitdeck.history]\nmax_undo = 10\n'
        '[tool.gitdeck.watcher]\nwatch_worktree = false\n'
    )

    conf = Config.load(repo_path=tmp_path)

    assert conf.history.max_undo == 10
    assert conf.watcher.watch_worktree is False


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760
    assert parse_size("1.5gb") == int(1.5 * 1024**3)

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_parse_time() -> None:
    """Verifies that human-readable times are correctly converted to seconds."""
    assert parse_time(50) == 50
    assert parse_time(0.25) == 0.25
    assert parse_time("30s") == 30
    assert parse_time("300ms") == pytest.approx(0.3)
    assert parse_time("10 min") == 600
    assert parse_time("2 hrs") == 7200
    assert parse_time("1.5h") == 5400

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_time("10 lightyears")


def test_config_invalid_keys_and_values(
    tmp_path: Path, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fallback to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.WARNING)
    mocker.patch("gitdeck.config.CONFIG_FILE", tmp_path / "missing.toml")

    local_toml = tmp_path / "gitdeck.toml"
    local_toml.write_text(
        "[cache]\n"
        'tags = "fast"\n'
        'fake_setting = "ignored"\n'
        "[history]\n"
        "max_undo = 0\n"
        "[limits]\n"
        'max_log_size = "10 gallons"\n'
    )

    conf = Config.load(repo_path=tmp_path)

    # Assert fallbacks to defaults
    assert conf.cache.tags == 120
    assert conf.history.max_undo == 50
    assert conf.limits.max_log_size == 5242880

    # Assert warnings were logged
    assert "Unknown config keys in [cache]: fake_setting" in caplog.text
    assert "Config error in [cache].tags: Invalid time format" in caplog.text
    assert "Config error in [history].max_undo" in caplog.text
    assert "Config error in [limits].max_log_size: Invalid size format" in caplog.text


def test_config_syntax_error_is_logged(
    tmp_path: Path, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch("gitdeck.config.CONFIG_FILE", tmp_path / "missing.toml")
    (tmp_path / "gitdeck.toml").write_text("[cache\nbroken")

    conf = Config.load(repo_path=tmp_path)

    assert conf.cache.branches == 30
    assert "Config syntax error" in caplog.text
