"""Per-repository coordinator between git, the caches, the watcher and observers.

One `RepositoryOrchestrator` serves one open repository (one tab). All public
methods run under an instance-level re-entrant lock, so operations on one
repository are linearized while separate instances proceed independently.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from .cache import TTLCache
from .config import Config
from .constants import APP_NAME, AUTO_STASH_PREFIX
from .errors import (
    CommandError,
    GitDeckError,
    NoRepositoryError,
    PartialPatchError,
    PatchApplyError,
)
from .git_wrapper import GitRepo
from .history import GitOperation, OperationLog
from .models import (
    AutoStashResult,
    Branch,
    ChangeSignal,
    DiffHunk,
    Reference,
    Remote,
    RepositoryContext,
    RepositoryStatus,
    ResetMode,
    Stash,
    Tag,
)
from .patch import Patch, PatchMode, build_patch
from .runner import CommandRunner
from .watcher import RepositoryWatcher

logger = logging.getLogger(APP_NAME)

Observer = Callable[[Path], None]

CACHE_NAMES = (
    "branches",
    "remote_branches",
    "tags",
    "remotes",
    "stashes",
    "status",
    "head",
)


def _layer_name(cached: bool) -> str:
    return "index" if cached else "working tree"


class RepositoryOrchestrator:
    """Keeps an in-memory view of one repository consistent with disk.

    Reads are served cache-first with per-view lifetimes. Mutations go through
    `GitRepo` and are followed by either a status-only refresh (index and working
    tree edits) or a full refresh (anything that can move refs). Watcher signals
    are dispatched to the narrowest refresh that covers them.

    Attributes:
        config (Config): Settings in effect for the open repository.
        history (OperationLog): Undo/redo log for the open repository.
    """

    def __init__(
        self,
        config: Config | None = None,
        runner: CommandRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
        watch: bool = True,
    ):
        """Initializes an orchestrator with no repository open.

        Args:
            config (Config | None): Fixed settings. If None, settings are loaded
                per repository on open.
            runner (CommandRunner | None): Process runner shared by every git call.
            clock (Callable[[], float]): Monotonic clock for the caches.
            watch (bool): Whether to start a filesystem watcher on open.
        """
        self._explicit_config = config
        self._runner = runner
        self._clock = clock
        self._watch = watch
        self._lock = threading.RLock()

        self.config = config or Config()
        self.history = OperationLog(self.config.history.max_undo)
        self._caches = self._make_caches()
        self._repo: GitRepo | None = None
        self._context: RepositoryContext | None = None
        self._watcher: RepositoryWatcher | None = None
        self._observers: list[Observer] = []

    # --- State ---

    @property
    def is_open(self) -> bool:
        return self._repo is not None

    @property
    def repo(self) -> GitRepo | None:
        return self._repo

    @property
    def path(self) -> Path | None:
        return self._repo.path if self._repo is not None else None

    @property
    def context(self) -> RepositoryContext | None:
        """The latest snapshot, or None if no repository is open."""
        return self._context

    @property
    def watcher(self) -> RepositoryWatcher | None:
        return self._watcher

    def _require_repo(self) -> GitRepo:
        if self._repo is None:
            raise NoRepositoryError()
        return self._repo

    def _make_caches(self) -> dict[str, TTLCache]:
        ttls = self.config.cache
        return {
            name: TTLCache(getattr(ttls, name), self._clock) for name in CACHE_NAMES
        }

    def invalidate(self, *names: str) -> None:
        """Invalidates the named caches, or all of them if none are given."""
        with self._lock:
            for name in names or CACHE_NAMES:
                self._caches[name].invalidate()

    def cache_is_valid(self, name: str) -> bool:
        return self._caches[name].is_valid

    # --- Lifecycle ---

    def open(self, path: Path) -> RepositoryContext:
        """Opens an existing repository, replacing whatever was open.

        Raises:
            NotARepositoryError: If `path` is not inside a git work tree.
        """
        with self._lock:
            self._stop_watcher()
            runner = self._prepare(Path(path))
            repo = GitRepo.open(Path(path), runner)
            return self._install(repo)

    def clone(self, url: str, path: Path) -> RepositoryContext:
        with self._lock:
            self._stop_watcher()
            runner = self._prepare(Path(path))
            repo = GitRepo.clone(url, Path(path), runner)
            return self._install(repo)

    def init(self, path: Path) -> RepositoryContext:
        with self._lock:
            self._stop_watcher()
            runner = self._prepare(Path(path))
            repo = GitRepo.init(Path(path), runner)
            return self._install(repo)

    def close(self) -> None:
        """Stops watching and forgets the open repository."""
        with self._lock:
            self._stop_watcher()
            if self._repo is not None:
                logger.info(f"Closed {self._repo.path}")
            self._repo = None
            self._context = None
            self.invalidate()
            self.history.clear()

    def _prepare(self, path: Path) -> CommandRunner:
        self.config = self._explicit_config or Config.load(path)
        return self._runner or CommandRunner(timeout=self.config.limits.command_timeout)

    def _install(self, repo: GitRepo) -> RepositoryContext:
        self._repo = repo
        self._caches = self._make_caches()
        self.history = OperationLog(self.config.history.max_undo)
        self._context = self._load_context()
        logger.info(f"Opened {repo.path}")
        if self._watch:
            self._start_watcher(repo)
        self._notify()
        return self._context

    def _start_watcher(self, repo: GitRepo) -> None:
        settings = self.config.watcher
        watcher: RepositoryWatcher | None = None

        def on_signal(signal: ChangeSignal) -> None:
            self._on_watcher_signal(watcher, signal)

        watcher = RepositoryWatcher(
            repo.path,
            on_signal,
            git_dir=repo.git_dir,
            debounce=settings.debounce,
            poll_interval=settings.poll_interval,
            watch_worktree=settings.watch_worktree,
            excludes=settings.exclude,
        )
        self._watcher = watcher
        watcher.start_all()

    def _stop_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.stop_all()

    def _on_watcher_signal(
        self, watcher: RepositoryWatcher | None, signal: ChangeSignal
    ) -> None:
        with self._lock:
            if watcher is None or watcher is not self._watcher:
                logger.debug(
                    f"Dropping late '{signal.value}' signal from a stopped watcher"
                )
                return
            self.handle_change_signal(signal)

    # --- Observers ---

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Registers `callback(path)` for state changes of this repository.

        Returns:
            Callable[[], None]: Removes the subscription when called.
        """
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if self._repo is None:
            return
        path = self._repo.path
        for callback in list(self._observers):
            try:
                callback(path)
            except Exception:
                logger.exception(f"Observer failed for {path}")

    # --- Refresh ---

    def _load_context(self) -> RepositoryContext:
        repo = self._require_repo()
        return RepositoryContext(
            path=repo.path,
            head=self.get_head(),
            status=self.get_status(),
            branches=self.get_branches(),
            remote_branches=self.get_remote_branches(),
            tags=self.get_tags(),
            remotes=self.get_remotes(),
            stashes=self.get_stashes(),
            timestamp=time.time(),
        )

    def refresh(self) -> RepositoryContext:
        """Invalidates every cache and re-reads the whole context."""
        with self._lock:
            self._require_repo()
            self.invalidate()
            self._context = self._load_context()
            self._notify()
            return self._context

    def refresh_status(self) -> RepositoryStatus:
        """Re-reads only the working tree status."""
        with self._lock:
            self._require_repo()
            self._caches["status"].invalidate()
            status = self.get_status()
            if self._context is not None:
                self._context = replace(
                    self._context, status=status, timestamp=time.time()
                )
            self._notify()
            return status

    def handle_change_signal(self, signal: ChangeSignal) -> None:
        """Applies the narrowest refresh that covers an on-disk change.

        Errors are logged rather than raised; signals arrive from the watcher
        thread, which has no caller to report to.
        """
        with self._lock:
            if self._repo is None:
                logger.debug(f"Dropping '{signal.value}' signal: no repository open")
                return
            logger.debug(f"Handling '{signal.value}' change in {self._repo.path}")
            try:
                self._dispatch(ChangeSignal(signal))
            except GitDeckError as e:
                logger.warning(f"Refresh after '{signal.value}' change failed: {e}")

    def _dispatch(self, signal: ChangeSignal) -> None:
        if signal is ChangeSignal.STATUS:
            self.refresh_status()
        elif signal is ChangeSignal.HEAD:
            self._caches["head"].invalidate()
            head = self.get_head()
            if self._context is not None:
                self._context = replace(self._context, head=head)
            self.refresh_status()
        elif signal is ChangeSignal.REFS:
            self.invalidate("branches", "remote_branches", "tags")
            self._notify()
        elif signal is ChangeSignal.STASH:
            self.invalidate("stashes")
            self._notify()
        elif signal is ChangeSignal.CONFIG:
            self.invalidate("remotes")
        else:
            self.refresh()

    # --- Cached reads ---

    def _cached(self, name: str, loader: Callable[[], Any]) -> Any:
        with self._lock:
            self._require_repo()
            cache = self._caches[name]
            hit, value = cache.lookup()
            if not hit:
                value = loader()
                cache.set(value)
            return value

    def get_head(self) -> Reference | None:
        return self._cached("head", lambda: self._require_repo().head())

    def get_status(self) -> RepositoryStatus:
        return self._cached("status", lambda: self._require_repo().status())

    def get_branches(self) -> tuple[Branch, ...]:
        return self._cached("branches", lambda: tuple(self._require_repo().branches()))

    def get_remote_branches(self) -> tuple[Branch, ...]:
        return self._cached(
            "remote_branches", lambda: tuple(self._require_repo().remote_branches())
        )

    def get_tags(self) -> tuple[Tag, ...]:
        return self._cached("tags", lambda: tuple(self._require_repo().tags()))

    def get_remotes(self) -> tuple[Remote, ...]:
        return self._cached("remotes", lambda: tuple(self._require_repo().remotes()))

    def get_stashes(self) -> tuple[Stash, ...]:
        return self._cached("stashes", lambda: tuple(self._require_repo().stashes()))

    # --- Uncached reads ---

    def get_diff(self, file: str | None = None, staged: bool = False) -> str:
        with self._lock:
            return self._require_repo().diff(file, staged)

    def get_hunks(self, file: str, staged: bool = False) -> list[DiffHunk]:
        """Returns the current hunks of one file, straight from git."""
        with self._lock:
            files = self._require_repo().diff_hunks(file, staged)
            return [hunk for diff in files for hunk in diff.hunks]

    # --- Index and working tree ---

    def stage(self, files: list[str]) -> None:
        with self._lock:
            self._require_repo().stage(files)
            self.history.record(GitOperation.for_stage(files))
            self.refresh_status()

    def stage_all(self) -> None:
        with self._lock:
            self._require_repo().stage_all()
            self.refresh_status()

    def unstage(self, files: list[str]) -> None:
        with self._lock:
            self._require_repo().unstage(files)
            self.history.record(GitOperation.for_unstage(files))
            self.refresh_status()

    def discard_changes(self, files: list[str]) -> None:
        with self._lock:
            self._require_repo().discard_changes(files)
            self.refresh_status()

    def discard_staged_file(self, path: str) -> None:
        """Unstages `path` and then discards its working tree changes."""
        with self._lock:
            repo = self._require_repo()
            repo.unstage([path])
            repo.discard_changes([path])
            self.refresh_status()

    def apply_selection(
        self,
        path: str,
        hunk: DiffHunk,
        mode: PatchMode,
        line_indices: list[int] | None = None,
    ) -> None:
        """Builds a patch for the selected lines of `hunk` and applies it.

        Modes that touch both the index and the working tree either change both
        or neither: if a later step is rejected, the earlier ones are reverted.

        Raises:
            PatchError: If the selection is not a valid set of change lines.
            PatchApplyError: If git rejects the patch (the hunk is stale). Nothing
                was changed.
            PartialPatchError: If a later step was rejected and an earlier one
                could not be reverted. `applied` names the changed layers.
        """
        with self._lock:
            repo = self._require_repo()
            patch = build_patch(path, hunk, mode, line_indices)
            try:
                self._apply_steps(repo, patch, mode.applications)
            except PatchApplyError:
                self._best_effort(
                    "refresh status after rejected patch", self.refresh_status
                )
                raise
            logger.debug(f"Applied {mode.value} patch to {path}")
            self.refresh_status()

    def _apply_steps(
        self, repo: GitRepo, patch: Patch, steps: list[tuple[bool, bool]]
    ) -> None:
        applied: list[tuple[bool, bool]] = []
        for cached, reverse in steps:
            try:
                repo.apply_patch(
                    patch.text,
                    cached=cached,
                    reverse=reverse,
                    unidiff_zero=not patch.has_context,
                )
            except PatchApplyError as e:
                if applied:
                    self._roll_back(repo, patch, applied, e)
                raise
            applied.append((cached, reverse))

    def _roll_back(
        self,
        repo: GitRepo,
        patch: Patch,
        applied: list[tuple[bool, bool]],
        error: PatchApplyError,
    ) -> None:
        """Reverts already applied steps, newest first.

        Raises:
            PartialPatchError: If a step cannot be reverted.
        """
        remaining = list(applied)
        while remaining:
            cached, reverse = remaining[-1]
            try:
                repo.apply_patch(
                    patch.text,
                    cached=cached,
                    reverse=not reverse,
                    unidiff_zero=not patch.has_context,
                )
            except PatchApplyError as rollback_error:
                layers = [_layer_name(c) for c, _ in remaining]
                logger.error(
                    f"Could not revert {_layer_name(cached)} change to "
                    f"{patch.file_path}: {rollback_error}"
                )
                raise PartialPatchError(
                    error.command, error.stderr, error.returncode, layers
                ) from rollback_error
            remaining.pop()
        logger.warning(
            f"Patch to {patch.file_path} rejected midway; "
            f"reverted {len(applied)} step(s)"
        )

    def stage_line(self, path: str, hunk: DiffHunk, line_index: int) -> None:
        self.apply_selection(path, hunk, PatchMode.STAGE, [line_index])

    def stage_lines(self, path: str, hunk: DiffHunk, line_indices: list[int]) -> None:
        self.apply_selection(path, hunk, PatchMode.STAGE, line_indices)

    def unstage_line(self, path: str, hunk: DiffHunk, line_index: int) -> None:
        self.apply_selection(path, hunk, PatchMode.UNSTAGE, [line_index])

    def discard_line(self, path: str, hunk: DiffHunk, line_index: int) -> None:
        self.apply_selection(path, hunk, PatchMode.DISCARD_UNSTAGED, [line_index])

    def discard_staged_line(self, path: str, hunk: DiffHunk, line_index: int) -> None:
        self.apply_selection(path, hunk, PatchMode.DISCARD_STAGED, [line_index])

    def stage_hunk(self, path: str, hunk: DiffHunk) -> None:
        self.apply_selection(path, hunk, PatchMode.STAGE)

    def unstage_hunk(self, path: str, hunk: DiffHunk) -> None:
        self.apply_selection(path, hunk, PatchMode.UNSTAGE)

    def discard_hunk(self, path: str, hunk: DiffHunk) -> None:
        self.apply_selection(path, hunk, PatchMode.DISCARD_UNSTAGED)

    def discard_staged_hunk(self, path: str, hunk: DiffHunk) -> None:
        self.apply_selection(path, hunk, PatchMode.DISCARD_STAGED)

    # --- Commits and refs ---

    def commit(self, message: str) -> str:
        with self._lock:
            sha = self._require_repo().commit(message)
            self.history.record(GitOperation.for_commit(sha, message))
            self.refresh()
            return sha

    def amend(self, message: str) -> str:
        with self._lock:
            repo = self._require_repo()
            previous = repo.rev_parse("HEAD") or ""
            sha = repo.commit(message, amend=True)
            self.history.record(GitOperation.for_amend(previous, sha))
            self.refresh()
            return sha

    def checkout(self, ref: str, force: bool = False) -> None:
        with self._lock:
            repo = self._require_repo()
            head = repo.head()
            repo.checkout(ref, force)
            if head is not None:
                from_ref = head.sha if head.detached else head.name
                self.history.record(GitOperation.for_checkout(from_ref, ref))
            self.refresh()

    def create_branch(
        self, name: str, start_point: str = "HEAD", checkout: bool = False
    ) -> Branch:
        with self._lock:
            branch = self._require_repo().create_branch(name, start_point, checkout)
            self.history.record(GitOperation.for_branch_create(name, branch.sha))
            self.refresh()
            return branch

    def delete_branch(self, name: str, force: bool = False) -> None:
        with self._lock:
            repo = self._require_repo()
            sha = repo.rev_parse(f"refs/heads/{name}")
            repo.delete_branch(name, force)
            if sha:
                self.history.record(GitOperation.for_branch_delete(name, sha))
            self.refresh()

    def merge(
        self,
        branch: str,
        no_ff: bool = False,
        squash: bool = False,
        message: str | None = None,
    ) -> None:
        with self._lock:
            repo = self._require_repo()
            before = repo.rev_parse("HEAD")
            repo.merge(branch, no_ff=no_ff, squash=squash, message=message)
            after = repo.rev_parse("HEAD")
            # Squash merges and no-op merges leave HEAD where it was.
            if after and after != before:
                self.history.record(GitOperation.for_merge(branch, after))
            self.refresh()

    def merge_abort(self) -> None:
        with self._lock:
            self._require_repo().merge_abort()
            self.refresh()

    def reset(self, target: str, mode: ResetMode = ResetMode.MIXED) -> None:
        with self._lock:
            repo = self._require_repo()
            before = repo.rev_parse("HEAD")
            repo.reset(target, mode)
            after = repo.rev_parse("HEAD")
            if before and after:
                self.history.record(GitOperation.for_reset(before, after, mode))
            self.refresh()

    def revert(self, shas: list[str], no_commit: bool = False) -> None:
        with self._lock:
            repo = self._require_repo()
            repo.revert(shas, no_commit)
            # The inverse drops exactly one commit.
            if len(shas) == 1 and not no_commit:
                result = repo.rev_parse("HEAD") or ""
                self.history.record(GitOperation.for_revert(shas[0], result))
            self.refresh()

    def cherry_pick(self, sha: str) -> None:
        with self._lock:
            repo = self._require_repo()
            repo.cherry_pick(sha)
            result = repo.rev_parse("HEAD") or ""
            self.history.record(GitOperation.for_cherry_pick(sha, result))
            self.refresh()

    def rebase(self, onto: str) -> None:
        with self._lock:
            self._require_repo().rebase(onto)
            self.refresh()

    def rebase_continue(self) -> None:
        with self._lock:
            self._require_repo().rebase_continue()
            self.refresh()

    def rebase_abort(self) -> None:
        with self._lock:
            self._require_repo().rebase_abort()
            self.refresh()

    def create_tag(
        self, name: str, message: str | None = None, ref: str = "HEAD"
    ) -> Tag:
        with self._lock:
            tag = self._require_repo().create_tag(name, message, ref)
            self.history.record(GitOperation.for_tag_create(name, tag.sha))
            self.refresh()
            return tag

    def delete_tag(self, name: str) -> None:
        with self._lock:
            repo = self._require_repo()
            sha = repo.rev_parse(f"refs/tags/{name}^{{commit}}")
            repo.delete_tag(name)
            if sha:
                self.history.record(GitOperation.for_tag_delete(name, sha))
            self.refresh()

    # --- Remotes ---

    def fetch(self, remote: str | None = None, prune: bool = True) -> None:
        with self._lock:
            self._require_repo().fetch(remote, prune)
            self.refresh()

    def pull(
        self,
        remote: str | None = None,
        branch: str | None = None,
        rebase: bool = False,
    ) -> None:
        with self._lock:
            self._require_repo().pull(remote, branch, rebase)
            self.refresh()

    def push(
        self,
        remote: str = "origin",
        branch: str | None = None,
        force: bool = False,
        set_upstream: bool = False,
    ) -> None:
        with self._lock:
            self._require_repo().push(remote, branch, force, set_upstream)
            self.refresh()

    def pull_with_auto_stash(self, rebase: bool = False) -> AutoStashResult:
        """Pulls, shelving tracked local changes around the pull if there are any.

        A stash that cannot be re-applied after a successful pull is reported in
        the result (`stash_conflict`) and left in the stash list.

        Raises:
            CommandError: If the pull itself fails. Any stash made for it has been
                popped back (best effort) before the error propagates.
        """
        with self._lock:
            repo = self._require_repo()
            # Always ask git: a cached status may predate the last edit.
            had_local_changes = repo.status().has_tracked_changes

            did_stash = False
            if had_local_changes:
                message = f"{AUTO_STASH_PREFIX} at {datetime.now():%Y-%m-%d %H:%M:%S}"
                did_stash = repo.stash(message, include_untracked=True) is not None

            try:
                repo.pull(rebase=rebase)
            except CommandError:
                if did_stash:
                    self._best_effort(
                        "restore auto-stash after failed pull", repo.stash_pop
                    )
                self._best_effort("refresh after failed pull", self.refresh)
                raise

            stash_applied = stash_conflict = False
            if did_stash:
                try:
                    repo.stash_pop()
                    stash_applied = True
                except CommandError as e:
                    logger.warning(f"Auto-stash could not be re-applied: {e}")
                    stash_conflict = True

            self.refresh()
            return AutoStashResult(
                had_local_changes=had_local_changes,
                did_stash=did_stash,
                stash_applied=stash_applied,
                stash_conflict=stash_conflict,
            )

    def _best_effort(self, what: str, action: Callable[[], Any]) -> bool:
        """Runs a cleanup step whose failure must not mask the error being handled.

        Returns:
            bool: Whether the step succeeded.
        """
        try:
            action()
        except GitDeckError as e:
            logger.warning(f"Could not {what}: {e}")
            return False
        return True

    # --- Stash ---

    def stash(
        self, message: str | None = None, include_untracked: bool = True
    ) -> Stash | None:
        with self._lock:
            entry = self._require_repo().stash(message, include_untracked)
            if entry is not None:
                self.history.record(
                    GitOperation.for_stash_create(entry.sha, entry.message)
                )
            self.refresh()
            return entry

    def stash_pop(self, ref: str = "stash@{0}") -> None:
        with self._lock:
            repo = self._require_repo()
            entry = next((s for s in repo.stashes() if s.ref == ref), None)
            repo.stash_pop(ref)
            # The inverse re-stashes onto the top of the list.
            if entry is not None:
                self.history.record(
                    GitOperation.for_stash_pop(entry.sha, entry.message)
                )
            self.refresh()

    def stash_apply(self, ref: str = "stash@{0}") -> None:
        with self._lock:
            self._require_repo().stash_apply(ref)
            self.refresh()

    def stash_drop(self, ref: str = "stash@{0}") -> None:
        with self._lock:
            self._require_repo().stash_drop(ref)
            self.refresh()

    # --- History ---

    def undo(self) -> GitOperation:
        """Reverses the most recent recorded operation, then refreshes."""
        with self._lock:
            repo = self._require_repo()
            op = self.history.undo(repo.run_raw)
            self.refresh()
            return op

    def redo(self) -> GitOperation:
        with self._lock:
            repo = self._require_repo()
            op = self.history.redo(repo.run_raw)
            self.refresh()
            return op
