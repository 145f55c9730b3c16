"""Bounded undo/redo log of mutating git operations.

Each recorded operation carries the argv that reverses it and a typed payload
describing how to perform it again. Only the kinds whose forward effect is a pure
function of that payload can be redone; the rest raise `RedoNotSupportedError`.
"""

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .constants import APP_NAME, MAX_UNDO
from .errors import (
    CommandError,
    NothingToRedoError,
    NothingToUndoError,
    RedoNotSupportedError,
)
from .models import ResetMode

logger = logging.getLogger(APP_NAME)

Executor = Callable[[list[str]], object]
"""Runs a git argv (without the leading 'git'), raising `CommandError` on failure."""


class OperationKind(str, Enum):
    STAGE = "stage"
    UNSTAGE = "unstage"
    COMMIT = "commit"
    AMEND = "amend"
    CHECKOUT = "checkout"
    BRANCH_CREATE = "branch-create"
    BRANCH_DELETE = "branch-delete"
    MERGE = "merge"
    STASH_CREATE = "stash-create"
    STASH_POP = "stash-pop"
    RESET = "reset"
    REVERT = "revert"
    CHERRY_PICK = "cherry-pick"
    TAG_CREATE = "tag-create"
    TAG_DELETE = "tag-delete"


# --- Redo payloads ---


@dataclass(frozen=True)
class StageRedo:
    files: tuple[str, ...]


@dataclass(frozen=True)
class UnstageRedo:
    files: tuple[str, ...]


@dataclass(frozen=True)
class CheckoutRedo:
    from_ref: str
    to_ref: str


@dataclass(frozen=True)
class BranchRedo:
    name: str
    sha: str


@dataclass(frozen=True)
class TagRedo:
    name: str
    sha: str


@dataclass(frozen=True)
class CommitRedo:
    sha: str
    message: str


@dataclass(frozen=True)
class MergeRedo:
    branch: str
    sha: str


@dataclass(frozen=True)
class StashRedo:
    sha: str
    message: str


@dataclass(frozen=True)
class ResetRedo:
    from_sha: str
    to_sha: str
    mode: ResetMode


@dataclass(frozen=True)
class RevertRedo:
    sha: str
    result_sha: str


@dataclass(frozen=True)
class CherryPickRedo:
    sha: str
    result_sha: str


@dataclass(frozen=True)
class AmendRedo:
    previous_sha: str
    new_sha: str


RedoPayload = (
    StageRedo
    | UnstageRedo
    | CheckoutRedo
    | BranchRedo
    | TagRedo
    | CommitRedo
    | MergeRedo
    | StashRedo
    | ResetRedo
    | RevertRedo
    | CherryPickRedo
    | AmendRedo
)


@dataclass(frozen=True)
class GitOperation:
    """One undoable step.

    Attributes:
        kind (OperationKind): What kind of operation this was.
        description (str): Human-readable summary for menus and logs.
        inverse (list[str]): Git argv that reverses the operation.
        redo (RedoPayload): Data needed to perform the operation again.
        timestamp (float): Wall-clock time the operation was recorded.
    """

    kind: OperationKind
    description: str
    inverse: list[str]
    redo: RedoPayload
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def for_stage(cls, files: list[str]) -> "GitOperation":
        return cls(
            OperationKind.STAGE,
            f"Stage {_describe_files(files)}",
            ["reset", "HEAD", "--", *files],
            StageRedo(tuple(files)),
        )

    @classmethod
    def for_unstage(cls, files: list[str]) -> "GitOperation":
        return cls(
            OperationKind.UNSTAGE,
            f"Unstage {_describe_files(files)}",
            ["add", "--", *files],
            UnstageRedo(tuple(files)),
        )

    @classmethod
    def for_commit(cls, sha: str, message: str) -> "GitOperation":
        summary = message.splitlines()[0] if message else ""
        return cls(
            OperationKind.COMMIT,
            f"Commit: {summary}",
            ["reset", "--soft", "HEAD~1"],
            CommitRedo(sha, message),
        )

    @classmethod
    def for_amend(cls, previous_sha: str, new_sha: str) -> "GitOperation":
        return cls(
            OperationKind.AMEND,
            f"Amend commit {previous_sha[:7]}",
            ["reset", "--soft", previous_sha],
            AmendRedo(previous_sha, new_sha),
        )

    @classmethod
    def for_checkout(cls, from_ref: str, to_ref: str) -> "GitOperation":
        return cls(
            OperationKind.CHECKOUT,
            f"Checkout {to_ref}",
            ["checkout", from_ref],
            CheckoutRedo(from_ref, to_ref),
        )

    @classmethod
    def for_branch_create(cls, name: str, sha: str) -> "GitOperation":
        return cls(
            OperationKind.BRANCH_CREATE,
            f"Create branch {name}",
            ["branch", "-D", name],
            BranchRedo(name, sha),
        )

    @classmethod
    def for_branch_delete(cls, name: str, sha: str) -> "GitOperation":
        return cls(
            OperationKind.BRANCH_DELETE,
            f"Delete branch {name}",
            ["branch", name, sha],
            BranchRedo(name, sha),
        )

    @classmethod
    def for_merge(cls, branch: str, sha: str) -> "GitOperation":
        return cls(
            OperationKind.MERGE,
            f"Merge {branch}",
            ["reset", "--hard", "HEAD~1"],
            MergeRedo(branch, sha),
        )

    @classmethod
    def for_stash_create(cls, sha: str, message: str) -> "GitOperation":
        return cls(
            OperationKind.STASH_CREATE,
            f"Stash: {message}",
            ["stash", "pop"],
            StashRedo(sha, message),
        )

    @classmethod
    def for_stash_pop(cls, sha: str, message: str) -> "GitOperation":
        return cls(
            OperationKind.STASH_POP,
            f"Pop stash: {message}",
            ["stash"],
            StashRedo(sha, message),
        )

    @classmethod
    def for_reset(cls, from_sha: str, to_sha: str, mode: ResetMode) -> "GitOperation":
        mode = ResetMode(mode)
        return cls(
            OperationKind.RESET,
            f"Reset ({mode.value}) to {to_sha[:7]}",
            ["reset", f"--{mode.value}", from_sha],
            ResetRedo(from_sha, to_sha, mode),
        )

    @classmethod
    def for_revert(cls, sha: str, result_sha: str) -> "GitOperation":
        return cls(
            OperationKind.REVERT,
            f"Revert {sha[:7]}",
            ["reset", "--hard", "HEAD~1"],
            RevertRedo(sha, result_sha),
        )

    @classmethod
    def for_cherry_pick(cls, sha: str, result_sha: str) -> "GitOperation":
        return cls(
            OperationKind.CHERRY_PICK,
            f"Cherry-pick {sha[:7]}",
            ["reset", "--hard", "HEAD~1"],
            CherryPickRedo(sha, result_sha),
        )

    @classmethod
    def for_tag_create(cls, name: str, sha: str) -> "GitOperation":
        return cls(
            OperationKind.TAG_CREATE,
            f"Create tag {name}",
            ["tag", "-d", name],
            TagRedo(name, sha),
        )

    @classmethod
    def for_tag_delete(cls, name: str, sha: str) -> "GitOperation":
        return cls(
            OperationKind.TAG_DELETE,
            f"Delete tag {name}",
            ["tag", name, sha],
            TagRedo(name, sha),
        )


def _describe_files(files: list[str]) -> str:
    if len(files) == 1:
        return files[0]
    return f"{len(files)} files"


def redo_command(op: GitOperation) -> list[str]:
    """Returns the argv that performs `op` again.

    Raises:
        RedoNotSupportedError: If the operation cannot be replayed from its payload.
    """
    payload = op.redo
    if op.kind is OperationKind.STAGE:
        return ["add", "--", *payload.files]
    if op.kind is OperationKind.UNSTAGE:
        return ["reset", "HEAD", "--", *payload.files]
    if op.kind is OperationKind.CHECKOUT:
        return ["checkout", payload.to_ref]
    if op.kind is OperationKind.BRANCH_CREATE:
        return ["branch", payload.name, payload.sha]
    if op.kind is OperationKind.BRANCH_DELETE:
        return ["branch", "-D", payload.name]
    if op.kind is OperationKind.TAG_CREATE:
        return ["tag", payload.name, payload.sha]
    if op.kind is OperationKind.TAG_DELETE:
        return ["tag", "-d", payload.name]
    raise RedoNotSupportedError(op.kind.value)


class OperationLog:
    """Two stacks of `GitOperation`s with a cap on the undo side.

    The log does not spawn processes itself; `undo` and `redo` take an executor
    (normally `GitRepo.run_raw`) so the log stays bound to no particular repository.

    Attributes:
        max_size (int): Undo entries kept; the oldest is dropped beyond this.
    """

    def __init__(self, max_size: int = MAX_UNDO):
        self.max_size = max_size
        self._undo: deque[GitOperation] = deque()
        self._redo: list[GitOperation] = []

    @property
    def undo_stack(self) -> tuple[GitOperation, ...]:
        """Oldest first; the last element is undone next."""
        return tuple(self._undo)

    @property
    def redo_stack(self) -> tuple[GitOperation, ...]:
        return tuple(self._redo)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def record(self, op: GitOperation) -> None:
        """Pushes a freshly performed operation. Any redo history is discarded."""
        self._undo.append(op)
        self._redo.clear()
        self._trim()

    def _trim(self) -> None:
        while len(self._undo) > self.max_size:
            dropped = self._undo.popleft()
            logger.debug(f"Undo history full, dropping: {dropped.description}")

    def undo(self, execute: Executor) -> GitOperation:
        """Reverses the most recent operation.

        Returns:
            GitOperation: The operation that was undone.

        Raises:
            NothingToUndoError: If the undo stack is empty.
            CommandError: If the inverse command fails. The operation stays on the
                undo stack.
        """
        if not self._undo:
            raise NothingToUndoError("Nothing to undo")
        op = self._undo.pop()
        try:
            execute(op.inverse)
        except CommandError:
            self._undo.append(op)
            raise
        self._redo.append(op)
        logger.info(f"Undid: {op.description}")
        return op

    def redo(self, execute: Executor) -> GitOperation:
        """Performs the most recently undone operation again.

        Raises:
            NothingToRedoError: If the redo stack is empty.
            RedoNotSupportedError: If the operation kind cannot be replayed. The
                operation stays on the redo stack.
            CommandError: If the command fails. The operation stays on the redo stack.
        """
        if not self._redo:
            raise NothingToRedoError("Nothing to redo")
        # Peek rather than pop: on any failure the operation is still on top.
        op = self._redo[-1]
        execute(redo_command(op))
        self._redo.pop()
        self._undo.append(op)
        self._trim()
        logger.info(f"Redid: {op.description}")
        return op

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
