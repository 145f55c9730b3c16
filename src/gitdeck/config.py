import copy
import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, ClassVar

from .constants import (
    APP_NAME,
    BRANCHES_TTL,
    CONFIG_FILE,
    DEBOUNCE_SECONDS,
    DEFAULT_WORKTREE_EXCLUDES,
    HEAD_TTL,
    LOCAL_CONFIG_NAME,
    MAX_UNDO,
    POLL_INTERVAL_SECONDS,
    REMOTE_BRANCHES_TTL,
    REMOTES_TTL,
    STASHES_TTL,
    STATUS_TTL,
    TAGS_TTL,
)

logger = logging.getLogger(APP_NAME)

_TIME_KEYS = {
    "branches",
    "remote_branches",
    "tags",
    "remotes",
    "stashes",
    "status",
    "head",
    "debounce",
    "poll_interval",
    "command_timeout",
}


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '300ms', '30s', '2m') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class CacheConfig:
    """Lifetimes of the per-view caches, in seconds.

    Attributes:
        branches (float): Local branch list.
        remote_branches (float): Remote-tracking branch list.
        tags (float): Tag list.
        remotes (float): Configured remotes.
        stashes (float): Stash list.
        status (float): Working tree status.
        head (float): What HEAD points at.
    """

    branches: float = BRANCHES_TTL
    remote_branches: float = REMOTE_BRANCHES_TTL
    tags: float = TAGS_TTL
    remotes: float = REMOTES_TTL
    stashes: float = STASHES_TTL
    status: float = STATUS_TTL
    head: float = HEAD_TTL


@dataclass
class WatcherConfig:
    """Filesystem watcher settings.

    Attributes:
        debounce (float): Seconds a burst of changes is collapsed over.
        poll_interval (float): Seconds between stat snapshots.
        watch_worktree (bool): Whether working tree files are watched at all.
        exclude (list[str]): Directory names skipped in the working tree
            (appended to defaults).
    """

    debounce: float = DEBOUNCE_SECONDS
    poll_interval: float = POLL_INTERVAL_SECONDS
    watch_worktree: bool = True
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_WORKTREE_EXCLUDES))


@dataclass
class HistoryConfig:
    """Undo history settings.

    Attributes:
        max_undo (int): Operations kept on the undo stack.
    """

    max_undo: int = MAX_UNDO


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
        command_timeout (float | None): Seconds before a git command is killed.
    """

    max_log_size: int = 5 * 1024 * 1024
    command_timeout: float | None = None


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        cache (CacheConfig): Cache lifetimes.
        watcher (WatcherConfig): Watcher behavior.
        history (HistoryConfig): Undo history.
        limits (LimitsConfig): Resource limits.
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: ClassVar["Config | None"] = None

    @classmethod
    def load(cls, repo_path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            repo_path (Path | None): The repository root to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        # Deep copy so local merges never leak into the cached global lists
        instance = copy.deepcopy(cls._global_cache)

        # 2. Load Local Config (if applicable)
        if repo_path:
            local_toml = Path(repo_path) / LOCAL_CONFIG_NAME
            pyproject = Path(repo_path) / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section=f"tool.{APP_NAME}")

        return instance

    @classmethod
    def reset_cache(cls) -> None:
        """Forgets the cached global configuration."""
        cls._global_cache = None

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.gitdeck').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            if "cache" in data:
                self.cache = self._update_dataclass("cache", self.cache, data["cache"])
            if "history" in data:
                self.history = self._update_dataclass(
                    "history", self.history, data["history"]
                )
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "watcher" in data:
                # Pulled out so the dataclass update does not overwrite it
                new_excludes = data["watcher"].pop("exclude", [])
                self.watcher = self._update_dataclass(
                    "watcher", self.watcher, data["watcher"]
                )
                if new_excludes:
                    self.watcher.exclude = list(
                        dict.fromkeys([*self.watcher.exclude, *new_excludes])
                    )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on unknown keys and parsing human formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in _TIME_KEYS:
                    filtered_updates[k] = parse_time(v)
                elif k == "max_undo":
                    if not isinstance(v, int) or isinstance(v, bool) or v < 1:
                        raise ValueError(f"expected a positive integer, got {v!r}")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. "
                    "Falling back to default."
                )

        return replace(instance, **filtered_updates)
