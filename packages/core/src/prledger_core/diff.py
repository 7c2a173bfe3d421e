"""Unified diff normalization.

Turns raw version-control diff text into immutable per-file hunk sequences:
files ordered by path, hunks ordered by post-image start line, edits in the
order they appear in the hunk. Parsing is strict. An unparseable hunk header,
a hunk body that disagrees with its header counts, or overlapping hunks raise
MalformedDiffError rather than being skipped, because a silently dropped hunk
would hide code from the reviewer and shift every line number after it.

Two input shapes are supported:
  - a full ``git diff`` document (``diff --git`` blocks with extended headers)
    or a plain ``diff -u`` document (``---``/``+++`` pairs), via parse_unified_diff();
  - a hunk-only patch for a single file, the shape GitHub's files API returns,
    via parse_patch().
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from prledger_core.errors import MalformedDiffError

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(?: ?(.*))?$")
_GIT_HEADER_RE = re.compile(r'^diff --git "?a/(?P<old>.+?)"? "?b/(?P<new>.+?)"?$')

# Extended header lines git emits between "diff --git" and the first hunk.
_METADATA_PREFIXES = (
    "index ",
    "old mode ",
    "new mode ",
    "similarity index ",
    "dissimilarity index ",
    "copy from ",
    "copy to ",
)


class LineKind(str, Enum):
    CONTEXT = " "
    ADD = "+"
    REMOVE = "-"


@dataclass(frozen=True)
class LineEdit:
    kind: LineKind
    text: str
    old_line: int | None
    new_line: int | None


@dataclass(frozen=True)
class Hunk:
    """One ``@@`` block of a file diff."""

    path: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str = ""
    lines: tuple[LineEdit, ...] = ()

    @property
    def old_end(self) -> int:
        return self.old_start + self.old_count - 1

    @property
    def new_end(self) -> int:
        return self.new_start + self.new_count - 1

    def header(self) -> str:
        header = f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"
        return f"{header} {self.section}" if self.section else header


@dataclass(frozen=True)
class FileDiff:
    path: str
    old_path: str | None = None
    status: str = "modified"  # "added" | "modified" | "removed" | "renamed"
    hunks: tuple[Hunk, ...] = ()
    binary: bool = False


# ---------------------------------------------------------------------- #
# Parsing                                                                 #
# ---------------------------------------------------------------------- #


def _parse_hunk_header(line: str, line_number: int) -> tuple[int, int, int, int, str]:
    match = _HUNK_HEADER_RE.match(line)
    if not match:
        raise MalformedDiffError(f"unparseable hunk header: {line[:80]!r}", line_number)
    old_start = int(match.group(1))
    old_count = int(match.group(2)) if match.group(2) is not None else 1
    new_start = int(match.group(3))
    new_count = int(match.group(4)) if match.group(4) is not None else 1
    return old_start, old_count, new_start, new_count, (match.group(5) or "").strip()


def _read_hunk(path: str, lines: list[str], pos: int) -> tuple[Hunk, int]:
    """Read the hunk whose header is at lines[pos]; return it and the next position.

    Consumes exactly as many body lines as the header declares, so a removed
    line whose text begins with "-- " is never mistaken for a file header.
    """
    old_start, old_count, new_start, new_count, section = _parse_hunk_header(lines[pos], pos + 1)
    pos += 1

    old_line, new_line = old_start, new_start
    old_left, new_left = old_count, new_count
    edits: list[LineEdit] = []

    while old_left > 0 or new_left > 0:
        if pos >= len(lines):
            raise MalformedDiffError(f"hunk in {path} ends before its header counts are satisfied", pos)
        raw = lines[pos]
        if raw.startswith("\\"):
            # "\ No newline at end of file"
            pos += 1
            continue
        marker, text = (raw[0], raw[1:]) if raw else (" ", "")
        if marker == " ":
            if old_left == 0 or new_left == 0:
                raise MalformedDiffError(f"hunk in {path} is longer than its header declares", pos + 1)
            edits.append(LineEdit(LineKind.CONTEXT, text, old_line, new_line))
            old_line += 1
            new_line += 1
            old_left -= 1
            new_left -= 1
        elif marker == "+":
            if new_left == 0:
                raise MalformedDiffError(f"hunk in {path} adds more lines than its header declares", pos + 1)
            edits.append(LineEdit(LineKind.ADD, text, None, new_line))
            new_line += 1
            new_left -= 1
        elif marker == "-":
            if old_left == 0:
                raise MalformedDiffError(f"hunk in {path} removes more lines than its header declares", pos + 1)
            edits.append(LineEdit(LineKind.REMOVE, text, old_line, None))
            old_line += 1
            old_left -= 1
        else:
            raise MalformedDiffError(f"unexpected line in hunk body: {raw[:80]!r}", pos + 1)
        pos += 1

    while pos < len(lines) and lines[pos].startswith("\\"):
        pos += 1

    hunk = Hunk(
        path=path,
        old_start=old_start,
        old_count=old_count,
        new_start=new_start,
        new_count=new_count,
        section=section,
        lines=tuple(edits),
    )
    return hunk, pos


def split_lines(text: str) -> list[str]:
    r"""Split on "\n" only, dropping one trailing "\r" per line.

    str.splitlines() also breaks on form feeds, U+2028 and friends, which are
    ordinary characters inside a diff line.
    """
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _order_hunks(path: str, hunks: Iterable[Hunk]) -> tuple[Hunk, ...]:
    """Sort hunks by post-image start line and reject overlaps."""
    ordered = sorted(hunks, key=lambda h: (h.new_start, h.old_start))
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.new_count and nxt.new_count and nxt.new_start <= prev.new_end:
            raise MalformedDiffError(
                f"overlapping hunks in {path}: +{prev.new_start},{prev.new_count} and +{nxt.new_start},{nxt.new_count}"
            )
        if prev.old_count and nxt.old_count and nxt.old_start <= prev.old_end:
            raise MalformedDiffError(
                f"overlapping hunks in {path}: -{prev.old_start},{prev.old_count} and -{nxt.old_start},{nxt.old_count}"
            )
    return tuple(ordered)


def parse_patch(path: str, patch: str, old_path: str | None = None, status: str = "modified") -> FileDiff:
    """Parse a hunk-only patch for one file (GitHub's ``file.patch``)."""
    lines = split_lines(patch)
    hunks: list[Hunk] = []
    pos = 0
    while pos < len(lines):
        line = lines[pos]
        if line.startswith("@@"):
            hunk, pos = _read_hunk(path, lines, pos)
            hunks.append(hunk)
        elif not line.strip():
            pos += 1
        elif hunks and line[0] in " +-":
            raise MalformedDiffError(f"hunk in {path} is longer than its header declares", pos + 1)
        else:
            raise MalformedDiffError(f"unexpected line outside a hunk: {line[:80]!r}", pos + 1)
    return FileDiff(path=path, old_path=old_path, status=status, hunks=_order_hunks(path, hunks))


def _strip_path(raw: str) -> str | None:
    """Turn a ``---``/``+++`` operand into a repo-relative path (None for /dev/null)."""
    path = raw.split("\t", 1)[0].strip()
    if len(path) >= 2 and path[0] == path[-1] == '"':
        path = path[1:-1]
    if path == "/dev/null":
        return None
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path


class _PendingFile:
    """Mutable accumulator for one file block; frozen into a FileDiff on flush."""

    def __init__(self, old_path: str | None = None, new_path: str | None = None):
        self.old_path = old_path
        self.new_path = new_path
        self.status = "modified"
        self.binary = False
        self.hunks: list[Hunk] = []

    @property
    def path(self) -> str | None:
        return self.new_path or self.old_path

    def freeze(self) -> FileDiff:
        path = self.path
        if path is None:
            raise MalformedDiffError("file block without a path")
        status = self.status
        if status == "modified" and self.old_path and self.new_path and self.old_path != self.new_path:
            status = "renamed"
        return FileDiff(
            path=path,
            old_path=self.old_path if self.old_path != path else None,
            status=status,
            hunks=_order_hunks(path, self.hunks),
            binary=self.binary,
        )


def _git_header_paths(line: str) -> tuple[str | None, str | None]:
    match = _GIT_HEADER_RE.match(line)
    if match:
        return match.group("old"), match.group("new")
    operands = line[len("diff --git ") :].split()
    if len(operands) == 2:
        return operands[0], operands[1]
    return None, None


def parse_unified_diff(text: str) -> list[FileDiff]:
    """Parse a multi-file unified diff into FileDiffs sorted by path."""
    lines = split_lines(text)
    files: list[FileDiff] = []
    pending: _PendingFile | None = None
    skipping_binary = False
    pos = 0

    def flush() -> None:
        if pending is not None:
            files.append(pending.freeze())

    while pos < len(lines):
        line = lines[pos]

        if line.startswith("diff --git "):
            flush()
            pending = _PendingFile(*_git_header_paths(line))
            skipping_binary = False
            pos += 1
            continue

        if skipping_binary:
            pos += 1
            continue

        if line.startswith("--- ") and pos + 1 < len(lines) and lines[pos + 1].startswith("+++ "):
            if pending is None or pending.hunks:
                flush()
                pending = _PendingFile()
            old_path, new_path = _strip_path(line[4:]), _strip_path(lines[pos + 1][4:])
            if old_path is None:
                pending.status = "added"
            if new_path is None:
                pending.status = "removed"
            pending.old_path = old_path
            pending.new_path = new_path
            if new_path is None and old_path is None:
                raise MalformedDiffError("file header where both sides are /dev/null", pos + 1)
            pos += 2
            continue

        if line.startswith("@@"):
            if pending is None or pending.path is None:
                raise MalformedDiffError("hunk appears before any file header", pos + 1)
            hunk, pos = _read_hunk(pending.path, lines, pos)
            pending.hunks.append(hunk)
            continue

        if pending is not None:
            if line.startswith(_METADATA_PREFIXES):
                pos += 1
                continue
            if line.startswith("new file mode"):
                pending.status = "added"
                pos += 1
                continue
            if line.startswith("deleted file mode"):
                pending.status = "removed"
                pos += 1
                continue
            if line.startswith("rename from "):
                pending.old_path = line[len("rename from ") :].strip()
                pending.status = "renamed"
                pos += 1
                continue
            if line.startswith("rename to "):
                pending.new_path = line[len("rename to ") :].strip()
                pending.status = "renamed"
                pos += 1
                continue
            if line.startswith("Binary files ") or line == "GIT binary patch":
                pending.binary = True
                skipping_binary = line == "GIT binary patch"
                pos += 1
                continue
            if pending.hunks and line[:1] in (" ", "+", "-"):
                raise MalformedDiffError(f"hunk in {pending.path} is longer than its header declares", pos + 1)

        if not line.strip():
            pos += 1
            continue

        if pending is None:
            # Preamble before the first file block (commit message of a format-patch).
            pos += 1
            continue

        raise MalformedDiffError(f"unexpected line outside a hunk: {line[:80]!r}", pos + 1)

    flush()
    return sorted(files, key=lambda f: f.path)


def normalize_diff(text: str) -> list[Hunk]:
    """Return every hunk of the diff ordered by (file path, hunk order)."""
    return [hunk for file_diff in parse_unified_diff(text) for hunk in file_diff.hunks]


# ---------------------------------------------------------------------- #
# Views over parsed diffs                                                 #
# ---------------------------------------------------------------------- #


def render_patch(file_diff: FileDiff) -> str:
    """Re-emit the normalized hunks of one file as patch text."""
    out: list[str] = []
    for hunk in file_diff.hunks:
        out.append(hunk.header())
        out.extend(edit.kind.value + edit.text for edit in hunk.lines)
    return "\n".join(out)


def post_image_lines(file_diff: FileDiff) -> dict[int, str]:
    """Map post-image line numbers to their text for every line the hunks show."""
    lines: dict[int, str] = {}
    for hunk in file_diff.hunks:
        for edit in hunk.lines:
            if edit.new_line is not None:
                lines[edit.new_line] = edit.text
    return lines


def context_window(lines: Mapping[int, str], start: int, end: int, radius: int = 3) -> tuple[str, ...]:
    """Return the known lines from ``start - radius`` to ``end + radius``."""
    return tuple(lines[n] for n in range(max(1, start - radius), end + radius + 1) if n in lines)


def map_line(file_diff: FileDiff, old_line: int) -> int | None:
    """Translate a pre-image line number into the post-image; None if it was removed."""
    offset = 0
    for hunk in file_diff.hunks:
        # A pure insertion (old_count == 0) goes after old_start, so old_start itself is untouched.
        first_affected = hunk.old_start if hunk.old_count else hunk.old_start + 1
        if old_line < first_affected:
            return old_line + offset
        if hunk.old_count and old_line <= hunk.old_end:
            for edit in hunk.lines:
                if edit.old_line == old_line:
                    return edit.new_line
            return None
        offset += hunk.new_count - hunk.old_count
    if file_diff.status == "removed":
        return None
    return old_line + offset


class LineMapper:
    """Translate (path, line) pairs from an older revision into a newer one.

    Built from the inter-diff between two revisions. Files the inter-diff does
    not touch map to themselves; renamed files are exposed through ``renames``.
    """

    def __init__(self, file_diffs: Iterable[FileDiff] = ()):
        self._by_old_path: dict[str, FileDiff] = {}
        self.renames: dict[str, str] = {}
        for file_diff in file_diffs:
            self._by_old_path[file_diff.old_path or file_diff.path] = file_diff
            if file_diff.status == "renamed" and file_diff.old_path and file_diff.old_path != file_diff.path:
                self.renames[file_diff.old_path] = file_diff.path

    def __call__(self, path: str, line: int) -> int | None:
        file_diff = self._by_old_path.get(path)
        if file_diff is None:
            return line
        return map_line(file_diff, line)

    def path_for(self, path: str) -> str:
        return self.renames.get(path, path)


def build_line_mapper(file_diffs: Iterable[FileDiff]) -> LineMapper:
    return LineMapper(file_diffs)
