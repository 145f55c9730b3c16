import os
from pathlib import Path

"""Global constants and path definitions for gitdeck.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, cache lifetimes, and the control-directory layout the
repository watcher keys its classification on.
"""

# --- Identity ---
APP_NAME = "gitdeck"
"""str: The human-readable application name."""

AUTO_STASH_PREFIX = "gitdeck auto-stash before pull"
"""str: Message prefix for stashes created by the auto-stash pull."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "gitdeck"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "gitdeck.log"
"""Path: The file path for the rotating log."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/gitdeck"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

LOCAL_CONFIG_NAME = "gitdeck.toml"
"""str: Per-repository configuration file name."""

# --- Cache lifetimes (seconds) ---
BRANCHES_TTL = 30.0
REMOTE_BRANCHES_TTL = 60.0
TAGS_TTL = 120.0
REMOTES_TTL = 300.0
STASHES_TTL = 30.0
STATUS_TTL = 5.0
HEAD_TTL = 10.0

# --- Watcher ---
DEBOUNCE_SECONDS = 0.3
"""float: Window in which a burst of filesystem events collapses into one signal."""

POLL_INTERVAL_SECONDS = 0.5
"""float: How often the watcher thread re-stats the control directory."""

WATCHED_CONTROL_FILES = ["index", "HEAD", "ORIG_HEAD", "config", "packed-refs"]
"""list[str]: Single files under the control directory whose stat is snapshotted."""

WATCHED_CONTROL_DIRS = ["refs", "logs"]
"""list[str]: Control subdirectories snapshotted recursively."""

DEFAULT_WORKTREE_EXCLUDES = [
    ".git",
    "node_modules",
    ".npm",
    ".pnpm-store",
    ".yarn",
    "__pycache__",
    ".pytest_cache",
    ".venv",
    "venv",
    ".tox",
    ".mypy_cache",
    "DerivedData",
    "Pods",
    ".swiftpm",
    ".build",
    "vendor",
    ".terraform",
    "build",
    "dist",
    "out",
    "target",
    ".cache",
]
"""list[str]: Directory names never walked when snapshotting the working tree."""

# --- History ---
MAX_UNDO = 50
"""int: Number of operations kept on the undo stack."""

# --- Patch application ---
GIT_APPLY_ARGS = ["apply", "--whitespace=nowarn"]
"""list[str]: Base argv for applying synthesized patches."""
