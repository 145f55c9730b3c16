"""Immutable snapshots of repository state.

Everything here is regenerated from git on demand and never mutated in place; a
refresh replaces the snapshot wholesale.
"""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ChangeSignal(str, Enum):
    """What kind of on-disk change the watcher observed."""

    STATUS = "status"
    HEAD = "head"
    REFS = "refs"
    STASH = "stash"
    CONFIG = "config"
    FULL = "full"


class ResetMode(str, Enum):
    SOFT = "soft"
    MIXED = "mixed"
    HARD = "hard"


class LineKind(str, Enum):
    CONTEXT = " "
    ADDITION = "+"
    DELETION = "-"


class FileState(str, Enum):
    MODIFIED = "M"
    ADDED = "A"
    DELETED = "D"
    RENAMED = "R"
    COPIED = "C"
    TYPE_CHANGED = "T"
    UNMERGED = "U"


@dataclass(frozen=True)
class Reference:
    """What HEAD points at.

    Attributes:
        name (str): Branch name, or the abbreviated SHA when detached.
        sha (str): The commit HEAD resolves to ('' in an empty repository).
        detached (bool): True when HEAD is not a symbolic ref.
    """

    name: str
    sha: str
    detached: bool = False


@dataclass(frozen=True)
class Branch:
    """A local or remote-tracking branch.

    Attributes:
        name (str): Short name (e.g. 'main' or 'origin/main').
        sha (str): The commit the branch points at.
        is_remote (bool): True for refs under refs/remotes.
        is_head (bool): True for the checked-out branch.
        upstream (str | None): Short name of the tracked upstream ref.
        ahead (int): Commits on this branch not on its upstream.
        behind (int): Commits on the upstream not on this branch.
        remote_name (str | None): The remote a remote-tracking branch belongs to.
    """

    name: str
    sha: str
    is_remote: bool = False
    is_head: bool = False
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    remote_name: str | None = None

    @property
    def full_name(self) -> str:
        prefix = "refs/remotes/" if self.is_remote else "refs/heads/"
        return prefix + self.name


@dataclass(frozen=True)
class Tag:
    name: str
    sha: str
    is_annotated: bool = False
    tagger: str | None = None
    date: datetime.datetime | None = None


@dataclass(frozen=True)
class Remote:
    name: str
    fetch_url: str
    push_url: str | None = None


@dataclass(frozen=True)
class Stash:
    """One entry of the stash list.

    Stashes are addressed by position, not identity: popping or dropping any
    entry shifts the index of every entry after it.
    """

    index: int
    message: str
    sha: str = ""
    date: datetime.datetime | None = None

    @property
    def ref(self) -> str:
        return f"stash@{{{self.index}}}"


@dataclass(frozen=True)
class FileStatus:
    path: str
    state: FileState
    orig_path: str | None = None


@dataclass(frozen=True)
class RepositoryStatus:
    """Staged, unstaged, untracked and conflicted paths of the working tree."""

    staged: tuple[FileStatus, ...] = ()
    unstaged: tuple[FileStatus, ...] = ()
    untracked: tuple[str, ...] = ()
    conflicted: tuple[FileStatus, ...] = ()

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.unstaged or self.untracked or self.conflicted)

    @property
    def has_tracked_changes(self) -> bool:
        return bool(self.staged or self.unstaged)


@dataclass(frozen=True)
class DiffLine:
    """One body line of a hunk.

    Attributes:
        kind (LineKind): Context, addition or deletion.
        content (str): The line text without its prefix or newline.
        old_lineno (int | None): Line number on the old side, if present there.
        new_lineno (int | None): Line number on the new side, if present there.
        no_newline (bool): Followed by '\\ No newline at end of file'.
    """

    kind: LineKind
    content: str
    old_lineno: int | None = None
    new_lineno: int | None = None
    no_newline: bool = False

    @property
    def is_change(self) -> bool:
        return self.kind is not LineKind.CONTEXT


@dataclass(frozen=True)
class DiffHunk:
    """A contiguous block of a diff sharing one `@@` header."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: tuple[DiffLine, ...] = ()
    section: str = ""

    @property
    def header(self) -> str:
        old = f"-{self.old_start},{self.old_count}"
        new = f"+{self.new_start},{self.new_count}"
        text = f"@@ {old} {new} @@"
        return f"{text} {self.section}" if self.section else text

    @property
    def additions(self) -> int:
        return sum(1 for line in self.lines if line.kind is LineKind.ADDITION)

    @property
    def deletions(self) -> int:
        return sum(1 for line in self.lines if line.kind is LineKind.DELETION)


@dataclass(frozen=True)
class FileDiff:
    path: str
    hunks: tuple[DiffHunk, ...] = ()
    old_path: str | None = None
    is_binary: bool = False
    is_new: bool = False
    is_deleted: bool = False


@dataclass(frozen=True)
class RepositoryContext:
    """Everything known about the open repository at one point in time.

    Replaced wholesale on every refresh; owned by exactly one orchestrator.
    """

    path: Path
    head: Reference | None = None
    status: RepositoryStatus = field(default_factory=RepositoryStatus)
    branches: tuple[Branch, ...] = ()
    remote_branches: tuple[Branch, ...] = ()
    tags: tuple[Tag, ...] = ()
    remotes: tuple[Remote, ...] = ()
    stashes: tuple[Stash, ...] = ()
    timestamp: float = 0.0

    @property
    def current_branch(self) -> str | None:
        if self.head is None or self.head.detached:
            return None
        return self.head.name


@dataclass(frozen=True)
class AutoStashResult:
    """Outcome of a pull that shelved local changes around itself.

    "Pull succeeded but the stash conflicts" is a valid end state, reported here
    rather than raised.
    """

    had_local_changes: bool
    did_stash: bool
    stash_applied: bool
    stash_conflict: bool

    @property
    def message(self) -> str:
        if not self.had_local_changes:
            return "Pull completed successfully"
        if not self.did_stash:
            return "Pull completed (no changes to stash)"
        if self.stash_applied:
            return "Pull completed. Your local changes have been re-applied."
        if self.stash_conflict:
            return (
                "Pull completed but your local changes could not be re-applied "
                "due to conflicts. Your changes are saved in the stash list."
            )
        return "Pull completed"

    @property
    def is_fully_successful(self) -> bool:
        return not self.stash_conflict
