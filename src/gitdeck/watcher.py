"""Detects on-disk repository changes and reports them as coarse signals.

A poll thread compares stat snapshots of the control directory (and optionally the
working tree) and feeds differing paths to `RepositoryWatcher.notify`. Paths are
classified into `ChangeSignal`s; a burst of notifications within the debounce
window collapses into exactly one delivered signal.
"""

import logging
import os
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from .constants import (
    APP_NAME,
    DEBOUNCE_SECONDS,
    DEFAULT_WORKTREE_EXCLUDES,
    POLL_INTERVAL_SECONDS,
    WATCHED_CONTROL_DIRS,
    WATCHED_CONTROL_FILES,
)
from .models import ChangeSignal

logger = logging.getLogger(APP_NAME)

Snapshot = dict[Path, tuple[int, int]]

_HEAD_FILES = {"HEAD", "logs/HEAD", "ORIG_HEAD"}
_REF_PREFIXES = (
    "refs/heads/",
    "refs/remotes/",
    "refs/tags/",
    "logs/refs/heads/",
    "logs/refs/remotes/",
)
_STASH_FILES = {"refs/stash", "logs/refs/stash"}


def classify_path(
    path: Path | str, repo_root: Path, git_dir: Path | None = None
) -> ChangeSignal:
    """Maps one changed path to the narrowest signal that covers it.

    Args:
        path (Path | str): The changed file. Relative paths are taken relative to
            `repo_root`.
        repo_root (Path): The working tree root.
        git_dir (Path | None): The control directory. Defaults to `repo_root/.git`.

    Returns:
        ChangeSignal: The category of the change.
    """
    repo_root = Path(repo_root)
    git_dir = Path(git_dir) if git_dir is not None else repo_root / ".git"
    path = Path(path)
    if not path.is_absolute():
        path = repo_root / path
    if path.name.endswith(".lock"):
        path = path.with_name(path.name[: -len(".lock")])

    if not path.is_relative_to(git_dir):
        if path.is_relative_to(repo_root):
            return ChangeSignal.STATUS
        return ChangeSignal.FULL

    rel = path.relative_to(git_dir).as_posix()
    if rel == "index":
        return ChangeSignal.STATUS
    if rel in _HEAD_FILES:
        return ChangeSignal.HEAD
    if rel == "packed-refs" or rel.startswith(_REF_PREFIXES):
        return ChangeSignal.REFS
    if rel in _STASH_FILES:
        return ChangeSignal.STASH
    if rel == "config":
        return ChangeSignal.CONFIG
    return ChangeSignal.FULL


def resolve_signals(signals: Iterable[ChangeSignal]) -> ChangeSignal | None:
    """Collapses a set of signals: one category stays itself, several become FULL."""
    unique = set(signals)
    if not unique:
        return None
    if len(unique) == 1:
        return unique.pop()
    return ChangeSignal.FULL


def classify_burst(
    paths: Iterable[Path | str], repo_root: Path, git_dir: Path | None = None
) -> ChangeSignal | None:
    """Classifies every path of a burst and resolves them to one signal."""
    return resolve_signals(classify_path(p, repo_root, git_dir) for p in paths)


def _stat(path: Path) -> tuple[int, int] | None:
    try:
        st = path.stat()
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size)


def _walk_files(root: Path, excludes: set[str]) -> Iterable[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in excludes]
        for name in filenames:
            yield Path(dirpath) / name


class RepositoryWatcher:
    """Polls one repository and delivers debounced `ChangeSignal`s.

    Lifecycle is bracketed by `start_all()` and `stop_all()`. After `stop_all()`
    nothing is delivered: the pending timer is cancelled, pending signals are
    discarded, and a generation counter makes any timer that already fired a no-op.

    Attributes:
        repo_root (Path): The working tree root.
        git_dir (Path): The control directory.
        debounce (float): Trailing-edge debounce window, in seconds.
        poll_interval (float): Seconds between stat snapshots.
        watch_worktree (bool): Whether working tree files are snapshotted.
    """

    def __init__(
        self,
        repo_root: Path,
        callback: Callable[[ChangeSignal], None],
        git_dir: Path | None = None,
        debounce: float = DEBOUNCE_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        watch_worktree: bool = True,
        excludes: list[str] | None = None,
    ):
        self.repo_root = Path(repo_root)
        self.git_dir = Path(git_dir) if git_dir is not None else self.repo_root / ".git"
        self.callback = callback
        self.debounce = debounce
        self.poll_interval = poll_interval
        self.watch_worktree = watch_worktree
        self.excludes = set(DEFAULT_WORKTREE_EXCLUDES if excludes is None else excludes)

        self._lock = threading.Lock()
        self._pending: set[ChangeSignal] = set()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._stopped = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._snapshot: Snapshot = {}

    # --- Snapshots ---

    def snapshot(self) -> Snapshot:
        """Stats every watched file. Missing files are simply absent."""
        result: Snapshot = {}
        for name in WATCHED_CONTROL_FILES:
            path = self.git_dir / name
            st = _stat(path)
            if st is not None:
                result[path] = st
        for name in WATCHED_CONTROL_DIRS:
            for path in _walk_files(self.git_dir / name, set()):
                st = _stat(path)
                if st is not None:
                    result[path] = st
        if self.watch_worktree:
            excludes = self.excludes | {self.git_dir.name}
            for path in _walk_files(self.repo_root, excludes):
                st = _stat(path)
                if st is not None:
                    result[path] = st
        return result

    def poll_once(self) -> list[Path]:
        """Takes a new snapshot and returns the paths that differ from the last one."""
        current = self.snapshot()
        previous = self._snapshot
        self._snapshot = current
        changed = [p for p, st in current.items() if previous.get(p) != st]
        changed.extend(p for p in previous if p not in current)
        return changed

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                changed = self.poll_once()
            except OSError as e:
                logger.warning(f"Watcher poll failed for {self.repo_root}: {e}")
                continue
            if changed:
                logger.debug(
                    f"Watcher saw {len(changed)} changed path(s) in {self.repo_root}"
                )
                self.notify(changed)

    # --- Lifecycle ---

    def start_all(self) -> None:
        """Takes a baseline snapshot and starts the poll thread."""
        with self._lock:
            self._stopped = False
        self._stop_event.clear()
        self._snapshot = self.snapshot()
        self._thread = threading.Thread(
            target=self._poll_loop, name=f"{APP_NAME}-watcher", daemon=True
        )
        self._thread.start()
        logger.debug(f"Watching {self.repo_root}")

    def stop_all(self) -> None:
        """Stops polling, cancels the debounce timer and drops pending signals."""
        with self._lock:
            self._stopped = True
            self._generation += 1
            self._pending.clear()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.poll_interval * 4, 1.0))
        logger.debug(f"Stopped watching {self.repo_root}")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # --- Debounce ---

    def notify(self, paths: Iterable[Path | str]) -> None:
        """Records changed paths and restarts the debounce timer."""
        signals = {classify_path(p, self.repo_root, self.git_dir) for p in paths}
        if not signals:
            return
        with self._lock:
            if self._stopped:
                return
            self._pending |= signals
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(
                self.debounce, self._fire, args=(self._generation,)
            )
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> ChangeSignal | None:
        """Delivers any pending signal immediately.

        Returns:
            ChangeSignal | None: The delivered signal, or None if nothing was pending.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            signal = self._take_pending()
        if signal is not None:
            self._deliver(signal)
        return signal

    def _take_pending(self) -> ChangeSignal | None:
        signal = resolve_signals(self._pending)
        self._pending.clear()
        return signal

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._stopped:
                return
            self._timer = None
            signal = self._take_pending()
        if signal is not None:
            self._deliver(signal)

    def _deliver(self, signal: ChangeSignal) -> None:
        try:
            self.callback(signal)
        except Exception:
            logger.exception(
                f"Change handler failed for {self.repo_root} ({signal.value})"
            )
