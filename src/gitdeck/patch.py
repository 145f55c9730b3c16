"""Synthesis of minimal patches for line- and hunk-level staging.

Whole-file `git add`/`git checkout` cannot move a single changed line between the
working tree and the index. Instead we take a hunk from `git diff`, keep only the
selected change lines, rewrite the rest so the patch still applies against the
current index or working tree, and hand the result to `git apply`.

Two constructions cover all four modes:

* forward (stage): the old side is the index as it is now. Unselected deletions
  stay in the index, so they become context; unselected additions never reach the
  index, so they are dropped.
* reverse (unstage, discard): the patch is applied with `-R`, so its new side must
  match what is on disk now. Unselected additions are on disk and stay there, so
  they become context; unselected deletions are not on disk and are dropped.
"""

from dataclasses import dataclass
from enum import Enum

from .diff import NO_NEWLINE_MARKER
from .errors import PatchError
from .models import DiffHunk, LineKind


class PatchMode(str, Enum):
    STAGE = "stage"
    UNSTAGE = "unstage"
    DISCARD_UNSTAGED = "discard-unstaged"
    DISCARD_STAGED = "discard-staged"

    @property
    def reverse(self) -> bool:
        """Whether the patch is built to be applied with `-R`."""
        return self is not PatchMode.STAGE

    @property
    def applications(self) -> list[tuple[bool, bool]]:
        """Ordered `(cached, reverse)` pairs for `git apply`.

        Discarding a staged change must undo both layers: the index first, then
        the working tree.
        """
        return _APPLICATIONS[self]

    @property
    def verb(self) -> str:
        return _VERBS[self]


_APPLICATIONS = {
    PatchMode.STAGE: [(True, False)],
    PatchMode.UNSTAGE: [(True, True)],
    PatchMode.DISCARD_UNSTAGED: [(False, True)],
    PatchMode.DISCARD_STAGED: [(True, True), (False, True)],
}

_VERBS = {
    PatchMode.STAGE: "stage",
    PatchMode.UNSTAGE: "unstage",
    PatchMode.DISCARD_UNSTAGED: "discard",
    PatchMode.DISCARD_STAGED: "discard",
}


@dataclass(frozen=True)
class Patch:
    """A unified-diff fragment ready for `git apply`.

    Attributes:
        file_path (str): Repository-relative path the patch touches.
        mode (PatchMode): The operation the patch was built for.
        text (str): The patch itself, newline terminated.
        has_context (bool): False if the hunk carries no context lines, in which
            case it must be applied with `--unidiff-zero`.
    """

    file_path: str
    mode: PatchMode
    text: str
    has_context: bool


def _quote_path(path: str) -> str:
    if path.isascii() and not any(c in path for c in '"\\\t\n'):
        return path
    escaped = path.encode("utf-8").decode("latin-1")
    out = []
    for ch in escaped:
        code = ord(ch)
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\n":
            out.append("\\n")
        elif code < 0x20 or code >= 0x7F:
            out.append(f"\\{code:03o}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _prefixed(prefix: str, path: str) -> str:
    quoted = _quote_path(path)
    if quoted.startswith('"'):
        return f'"{prefix}{quoted[1:]}'
    return prefix + quoted


def _derive_start(anchor_start: int, anchor_count: int, derived_count: int) -> int:
    """Start line for the side of a hunk whose length changed.

    In unified diffs an empty side names the line *before* the change, so the
    derived start shifts by one whenever exactly one of the two sides is empty.
    """
    if anchor_count > 0 and derived_count == 0:
        return max(anchor_start - 1, 0)
    if anchor_count == 0 and derived_count > 0:
        return anchor_start + 1
    return anchor_start


def _selection(
    hunk: DiffHunk, mode: PatchMode, line_indices: list[int] | None
) -> set[int]:
    changes = {i for i, line in enumerate(hunk.lines) if line.is_change}
    if not changes:
        raise PatchError("Invalid hunk structure: no added or removed lines")
    if line_indices is None:
        return changes

    selected = set(line_indices)
    if not selected:
        raise PatchError("No lines selected")
    for index in sorted(selected):
        if index < 0 or index >= len(hunk.lines):
            raise PatchError(f"Line index {index} is outside the hunk")
        if index not in changes:
            raise PatchError(
                f"Cannot {mode.verb} context lines (only additions and deletions)"
            )
    return selected


def _emit_tag(kind: LineKind, selected: bool, reverse: bool) -> str | None:
    if kind is LineKind.CONTEXT:
        return " "
    if selected:
        return kind.value
    kept_in_place = LineKind.ADDITION if reverse else LineKind.DELETION
    return " " if kind is kept_in_place else None


def build_patch(
    file_path: str,
    hunk: DiffHunk,
    mode: PatchMode,
    line_indices: list[int] | None = None,
) -> Patch:
    """Builds a patch that applies only the selected lines of `hunk`.

    Args:
        file_path (str): Repository-relative path of the file the hunk belongs to.
        hunk (DiffHunk): A hunk from `git diff` (unstaged modes) or
            `git diff --cached` (staged modes).
        mode (PatchMode): Which operation the patch will perform.
        line_indices (list[int] | None): Indices into `hunk.lines` to include.
            None selects every change line in the hunk.

    Returns:
        Patch: The synthesized patch.

    Raises:
        PatchError: If the selection is empty, out of range, or names a context line.
    """
    selected = _selection(hunk, mode, line_indices)

    body: list[str] = []
    old_count = new_count = 0
    has_context = False
    for index, line in enumerate(hunk.lines):
        tag = _emit_tag(line.kind, index in selected, mode.reverse)
        if tag is None:
            continue
        body.append(tag + line.content)
        if line.no_newline:
            body.append(NO_NEWLINE_MARKER)
        if tag != "+":
            old_count += 1
        if tag != "-":
            new_count += 1
        if tag == " ":
            has_context = True

    if mode.reverse:
        new_start = hunk.new_start
        old_start = _derive_start(new_start, new_count, old_count)
    else:
        old_start = hunk.old_start
        new_start = _derive_start(old_start, old_count, new_count)

    a_path = _prefixed("a/", file_path)
    b_path = _prefixed("b/", file_path)
    header = [
        f"diff --git {a_path} {b_path}",
        f"--- {a_path}",
        f"+++ {b_path}",
        f"@@ -{old_start},{old_count} +{new_start},{new_count} @@",
    ]
    text = "\n".join(header + body) + "\n"
    return Patch(file_path=file_path, mode=mode, text=text, has_context=has_context)


def build_line_patch(
    file_path: str, hunk: DiffHunk, line_index: int, mode: PatchMode
) -> Patch:
    """Builds a patch for the single change line at `line_index`."""
    return build_patch(file_path, hunk, mode, [line_index])


def build_hunk_patch(file_path: str, hunk: DiffHunk, mode: PatchMode) -> Patch:
    return build_patch(file_path, hunk, mode, None)
