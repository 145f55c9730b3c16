"""Parser for `git diff` unified output.

Produces fresh `FileDiff`/`DiffHunk`/`DiffLine` values on every call. Diffs are
never cached: a stale hunk handed to the patch builder is exactly the failure mode
line staging has to detect, so every request re-reads git.
"""

from unidiff import PatchSet
from unidiff.constants import (
    DEV_NULL,
    LINE_TYPE_EMPTY,
    LINE_TYPE_NO_NEWLINE,
    LINE_VALUE_NO_NEWLINE,
    RE_HUNK_HEADER,
)
from unidiff.errors import UnidiffParseError
from unidiff.patch import Hunk, PatchedFile

from .errors import DiffParseError
from .models import DiffHunk, DiffLine, FileDiff, LineKind

NO_NEWLINE_MARKER = LINE_TYPE_NO_NEWLINE + LINE_VALUE_NO_NEWLINE

_ESCAPES = {
    "a": b"\a",
    "b": b"\b",
    "f": b"\f",
    "n": b"\n",
    "r": b"\r",
    "t": b"\t",
    "v": b"\v",
    '"': b'"',
    "\\": b"\\",
}


def _unquote(path: str) -> str:
    """Strips git's C-style quoting from a path token.

    Non-ASCII names are quoted as octal escapes of their UTF-8 bytes, so the
    escapes are collected as bytes and decoded together.
    """
    if len(path) < 2 or path[0] != '"' or path[-1] != '"':
        return path
    body = path[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\" or i + 1 == len(body):
            out += ch.encode("utf-8")
            i += 1
            continue
        nxt = body[i + 1]
        octal = body[i + 1 : i + 4]
        if len(octal) == 3 and all(c in "01234567" for c in octal):
            out.append(int(octal, 8))
            i += 4
        else:
            out += _ESCAPES.get(nxt, nxt.encode("utf-8"))
            i += 2
    return out.decode("utf-8", errors="replace")


def _strip_prefix(path: str | None) -> str | None:
    if not path:
        return None
    path = _unquote(path.split("\t", 1)[0])
    if path == DEV_NULL:
        return None
    if path[:2] in ("a/", "b/"):
        return path[2:]
    return path


def parse_hunk_header(line: str) -> tuple[int, int, int, int, str]:
    """Parses an `@@ -a,b +c,d @@ section` line.

    A missing count means one line, as in `@@ -3 +3 @@`.

    Raises:
        ValueError: If the line is not a hunk header.
    """
    match = RE_HUNK_HEADER.match(line)
    if not match:
        raise ValueError(f"Invalid hunk header: {line!r}")
    old_start, old_count, new_start, new_count, section = match.groups()
    return (
        int(old_start),
        int(old_count) if old_count is not None else 1,
        int(new_start),
        int(new_count) if new_count is not None else 1,
        section.rstrip("\r\n"),
    )


def _content(value: str) -> str:
    # Only the line terminator goes; a '\r' before it is content.
    return value[:-1] if value.endswith("\n") else value


def _convert_hunk(hunk: Hunk) -> DiffHunk:
    body: list[DiffLine] = []
    for line in hunk:
        # Blank separator lines after the last hunk
        if line.line_type == LINE_TYPE_EMPTY:
            continue
        if line.line_type == LINE_TYPE_NO_NEWLINE:
            if body:
                last = body[-1]
                body[-1] = DiffLine(
                    last.kind, last.content, last.old_lineno, last.new_lineno, True
                )
            continue
        if line.is_added:
            body.append(
                DiffLine(
                    LineKind.ADDITION, _content(line.value), None, line.target_line_no
                )
            )
        elif line.is_removed:
            body.append(
                DiffLine(
                    LineKind.DELETION, _content(line.value), line.source_line_no, None
                )
            )
        else:
            body.append(
                DiffLine(
                    LineKind.CONTEXT,
                    _content(line.value),
                    line.source_line_no,
                    line.target_line_no,
                )
            )
    return DiffHunk(
        hunk.source_start,
        hunk.source_length,
        hunk.target_start,
        hunk.target_length,
        tuple(body),
        (hunk.section_header or "").strip(),
    )


def _convert_file(patched: PatchedFile) -> FileDiff:
    old_path = _strip_prefix(patched.source_file)
    new_path = _strip_prefix(patched.target_file)
    path = new_path if new_path is not None else old_path
    return FileDiff(
        path=path or "",
        hunks=tuple(_convert_hunk(h) for h in patched),
        old_path=old_path if old_path is not None and old_path != path else None,
        is_binary=patched.is_binary_file,
        is_new=old_path is None,
        is_deleted=new_path is None,
    )


def parse_diff(text: str) -> list[FileDiff]:
    """Splits unified diff output into per-file hunks.

    Args:
        text (str): Output of `git diff` (any number of files).

    Returns:
        list[FileDiff]: One entry per file section, in output order.

    Raises:
        DiffParseError: If the text is not a well-formed unified diff.
    """
    if not text:
        return []
    try:
        patch_set = PatchSet.from_string(text)
    except UnidiffParseError as e:
        raise DiffParseError(f"Malformed diff: {e}") from e
    return [_convert_file(patched) for patched in patch_set]
