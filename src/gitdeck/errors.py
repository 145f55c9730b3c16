"""Exception hierarchy for gitdeck.

Every failure the engine reports derives from `GitDeckError` so callers can catch
the whole family at one seam. Failures of the underlying git tool always carry the
exact argv that failed and its stderr, verbatim.
"""


class GitDeckError(Exception):
    """Base class for all gitdeck errors."""


class NoRepositoryError(GitDeckError):
    """Raised when an operation needs an open repository and none is active."""

    def __init__(self) -> None:
        super().__init__("No repository is currently open")


class NotARepositoryError(GitDeckError):
    """Raised when a path does not contain a git repository."""

    def __init__(self, path: object) -> None:
        super().__init__(f"Not a git repository: {path}")
        self.path = path


class CommandError(GitDeckError):
    """A git invocation exited with a non-zero status.

    Attributes:
        command (list[str]): The full argv that was executed.
        stderr (str): The stderr of the process, unmodified.
        returncode (int): The exit status.
    """

    def __init__(self, command: list[str], stderr: str, returncode: int = 1) -> None:
        self.command = list(command)
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(
            f"{' '.join(self.command)} failed ({returncode}): {stderr.strip()}"
        )


class PatchApplyError(CommandError):
    """A synthesized patch was rejected by `git apply`.

    Usually the hunk was computed against content that has since changed on disk;
    the remedy is to refresh the diff and retry.
    """

    hint = "The diff is out of date. Refresh and try again."


class PartialPatchError(PatchApplyError):
    """A multi-step patch was rejected midway and the earlier steps stayed applied.

    Attributes:
        applied (list[str]): The layers already changed ('index', 'working tree').
    """

    def __init__(
        self,
        command: list[str],
        stderr: str,
        returncode: int = 1,
        applied: list[str] | None = None,
    ) -> None:
        super().__init__(command, stderr, returncode)
        self.applied = list(applied or [])
        layers = " and ".join(self.applied) or "nothing"
        self.hint = (
            f"Partially applied: the {layers} already changed. Review before retrying."
        )


class PatchError(GitDeckError):
    """The requested line selection cannot be turned into a patch."""


class DiffParseError(GitDeckError):
    """`git diff` output could not be parsed."""


class NothingToUndoError(GitDeckError):
    """The undo stack is empty."""


class NothingToRedoError(GitDeckError):
    """The redo stack is empty."""


class RedoNotSupportedError(GitDeckError):
    """The operation type has no forward re-execution."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Redo not supported for '{kind}' operations")
        self.kind = kind
