"""gitdeck: Repository state synchronization for desktop git clients.

This package keeps an in-memory view of a git repository consistent with disk:
cached reads with per-view lifetimes, a debounced filesystem watcher that drives
differentiated refreshes, line- and hunk-level staging through synthesized
patches, and a bounded undo/redo log of mutating operations.
"""

from . import (
    cache,
    cli,
    config,
    constants,
    diff,
    errors,
    git_wrapper,
    history,
    logs,
    models,
    orchestrator,
    patch,
    runner,
    watcher,
    workspace,
)

__all__ = [
    "cache",
    "cli",
    "config",
    "constants",
    "diff",
    "errors",
    "git_wrapper",
    "history",
    "logs",
    "models",
    "orchestrator",
    "patch",
    "runner",
    "watcher",
    "workspace",
]
