# magi/core/DiffModel.py
"""DiffModel.py
==============
Immutable model of one diff comparison and the parser that builds it.

A refresh produces a `DiffSnapshot` holding three listings:

- untracked paths (no baseline, therefore no hunks),
- unstaged changes (index -> working tree),
- staged changes (HEAD -> index).

Each `FileChange` owns an ordered tuple of `Hunk` objects, each `Hunk` an
ordered tuple of `DiffLine` objects. Hunk and line identity is purely
positional: ``hunk.index`` and ``line.index`` are contiguous, zero-based and
only meaningful against the snapshot that produced them.

`parse_diff` is strict. Text that does not follow git's unified diff layout
raises `ParseError` instead of yielding a partial result, so a failed refresh
never replaces a good snapshot with a truncated one.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import Optional

from magi.core.Errors import ParseError


HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
NO_NEWLINE_MARKER = "\\ No newline at end of file"

# Extended header lines git may print between "diff --git" and the first hunk.
_EXTENDED_HEADER_PREFIXES = (
    "old mode ",
    "new mode ",
    "deleted file mode ",
    "new file mode ",
    "similarity index ",
    "dissimilarity index ",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
    "index ",
    "--- ",
    "+++ ",
    "Binary files ",
    "GIT binary patch",
)

_C_ESCAPES = {"a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v", '"': '"', "\\": "\\"}


class Section(enum.Enum):
    """The three listings of the status view, in display order."""

    UNTRACKED = "untracked"
    UNSTAGED = "unstaged"
    STAGED = "staged"


class LineKind(enum.Enum):
    CONTEXT = " "
    ADDITION = "+"
    DELETION = "-"


class ChangeKind(enum.Enum):
    MODIFIED = "modified"
    ADDED = "new file"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"


@dataclass(frozen=True)
class DiffLine:
    """One typed line of a hunk. ``text`` excludes the leading +/-/space."""

    kind: LineKind
    text: str
    index: int
    no_newline: bool = False

    @property
    def is_change(self) -> bool:
        return self.kind is not LineKind.CONTEXT

    def render(self) -> list[str]:
        """Returns the patch lines for this entry (plus its no-newline marker)."""
        rendered = [self.kind.value + self.text]
        if self.no_newline:
            rendered.append(NO_NEWLINE_MARKER)
        return rendered


@dataclass(frozen=True)
class Hunk:
    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: tuple[DiffLine, ...]
    index: int

    @property
    def change_indices(self) -> tuple[int, ...]:
        return tuple(line.index for line in self.lines if line.is_change)


@dataclass(frozen=True)
class FileChange:
    """All changes to one path within a single comparison.

    Attributes:
        path (str): Path of the file on the "new" side of the comparison.
        kind (ChangeKind): Modification, addition, deletion, rename or copy.
        hunks (tuple[Hunk, ...]): Ordered hunks; empty for binary or mode-only changes.
        header (tuple[str, ...]): Verbatim file header lines ("diff --git" up to "+++").
        old_path (Optional[str]): Source path of a rename or copy.
        binary (bool): True when git reported "Binary files ... differ".
    """

    path: str
    kind: ChangeKind
    hunks: tuple[Hunk, ...]
    header: tuple[str, ...]
    old_path: Optional[str] = None
    binary: bool = False


@dataclass(frozen=True)
class DiffSnapshot:
    """Result of one refresh. Discarded and rebuilt after every mutation."""

    untracked: tuple[str, ...] = ()
    unstaged: tuple[FileChange, ...] = ()
    staged: tuple[FileChange, ...] = ()
    head_branch: Optional[str] = field(default=None, compare=False)

    def files(self, section: Section) -> tuple[FileChange, ...]:
        if section is Section.UNSTAGED:
            return self.unstaged
        if section is Section.STAGED:
            return self.staged
        return ()

    def file(self, section: Section, path: str) -> FileChange:
        """Looks up a file of a diff section. A missing path is a KeyError."""
        for change in self.files(section):
            if change.path == path:
                return change
        raise KeyError(f"{path!r} not in {section.value} changes")

    @property
    def is_clean(self) -> bool:
        return not (self.untracked or self.unstaged or self.staged)


# ==================== Parsing ====================

def unquote_path(token: str) -> str:
    """Decodes a path git printed in C-style quotes (``"a\\tb"``)."""
    if len(token) < 2 or not (token.startswith('"') and token.endswith('"')):
        return token
    body = token[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\" or i + 1 >= len(body):
            out.extend(ch.encode("utf-8", "surrogateescape"))
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in "01234567" and i + 4 <= len(body):
            out.append(int(body[i + 1:i + 4], 8) & 0xFF)
            i += 4
        else:
            out.extend(_C_ESCAPES.get(nxt, nxt).encode("utf-8"))
            i += 2
    return out.decode("utf-8", "surrogateescape")


def _strip_prefix(path: str) -> str:
    path = unquote_path(path)
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _path_from_diff_git(line: str) -> str:
    rest = line[len("diff --git "):]
    if rest.startswith('"'):
        end = rest.index('"', 1)
        while rest[end - 1] == "\\":
            end = rest.index('"', end + 1)
        return _strip_prefix(rest[:end + 1])
    # Unquoted "a/P b/P": both halves have the same length when the path is unchanged.
    half = (len(rest) - 1) // 2
    return _strip_prefix(rest[:half])


def _parse_hunk_header(line: str, line_number: int) -> tuple[int, int, int, int]:
    match = HUNK_HEADER_RE.match(line)
    if not match:
        raise ParseError(f"Malformed hunk header {line!r}", line_number)
    old_start, old_count, new_start, new_count, _ = match.groups()
    return (
        int(old_start),
        int(old_count) if old_count is not None else 1,
        int(new_start),
        int(new_count) if new_count is not None else 1,
    )


class _FileBuilder:
    """Mutable accumulator for one file block while parsing."""

    def __init__(self, diff_git_line: str) -> None:
        self.header: list[str] = [diff_git_line]
        self.path = _path_from_diff_git(diff_git_line)
        self.old_path: Optional[str] = None
        self.kind = ChangeKind.MODIFIED
        self.binary = False
        self.hunks: list[Hunk] = []

    def add_header(self, line: str) -> None:
        self.header.append(line)
        if line.startswith("new file mode "):
            self.kind = ChangeKind.ADDED
        elif line.startswith("deleted file mode "):
            self.kind = ChangeKind.DELETED
        elif line.startswith("rename from "):
            self.kind = ChangeKind.RENAMED
            self.old_path = unquote_path(line[len("rename from "):])
        elif line.startswith("rename to "):
            self.path = unquote_path(line[len("rename to "):])
        elif line.startswith("copy from "):
            self.kind = ChangeKind.COPIED
            self.old_path = unquote_path(line[len("copy from "):])
        elif line.startswith("copy to "):
            self.path = unquote_path(line[len("copy to "):])
        elif line.startswith("+++ ") and line[4:] != "/dev/null":
            self.path = _strip_prefix(line[4:].rstrip("\t"))
        elif line.startswith("--- ") and line[4:] != "/dev/null":
            old = _strip_prefix(line[4:].rstrip("\t"))
            if self.kind is ChangeKind.DELETED:
                self.path = old
        elif line.startswith(("Binary files ", "GIT binary patch")):
            self.binary = True

    def build(self) -> FileChange:
        return FileChange(
            path=self.path,
            kind=self.kind,
            hunks=tuple(self.hunks),
            header=tuple(self.header),
            old_path=self.old_path,
            binary=self.binary,
        )


def _split_lines(text: str) -> list[str]:
    # Only "\n" separates diff lines; a "\r" belongs to the content of CRLF files.
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def parse_diff(text: str) -> tuple[FileChange, ...]:
    """Parses ``git diff`` output into an ordered tuple of `FileChange`.

    Hunk bodies are consumed by the counts in their header, so a blank
    line inside a hunk is read as an empty context line and a truncated
    hunk is reported instead of silently shortened.

    Args:
        text (str): Raw output of ``git diff`` (no color, no external diff).

    Returns:
        tuple[FileChange, ...]: Files in the order git printed them.

    Raises:
        ParseError: If the text is not a well-formed git unified diff.
    """
    lines = _split_lines(text)
    files: list[FileChange] = []
    current: Optional[_FileBuilder] = None
    pos = 0

    while pos < len(lines):
        line = lines[pos]
        line_number = pos + 1

        if line.startswith("diff --git "):
            if current is not None:
                files.append(current.build())
            current = _FileBuilder(line)
            pos += 1
            continue

        if current is None:
            if line.strip():
                raise ParseError(f"Unexpected text before first file header: {line!r}", line_number)
            pos += 1
            continue

        if line.startswith("@@"):
            hunk, pos = _parse_hunk(lines, pos, len(current.hunks))
            current.hunks.append(hunk)
            continue

        if not current.hunks and line.startswith(_EXTENDED_HEADER_PREFIXES):
            current.add_header(line)
            pos += 1
            continue

        if current.binary and not current.hunks:
            # Literal binary patch payload; not addressable by hunks.
            current.header.append(line)
            pos += 1
            continue

        raise ParseError(f"Unexpected line {line!r}", line_number)

    if current is not None:
        files.append(current.build())
    return tuple(files)


def _parse_hunk(lines: list[str], pos: int, hunk_index: int) -> tuple[Hunk, int]:
    header = lines[pos]
    old_start, old_count, new_start, new_count = _parse_hunk_header(header, pos + 1)
    pos += 1

    parsed: list[DiffLine] = []
    old_seen = new_seen = 0
    while old_seen < old_count or new_seen < new_count:
        if pos >= len(lines):
            raise ParseError(f"Hunk {header!r} ends early", pos)
        line = lines[pos]
        if line.startswith("\\"):
            parsed = _mark_no_newline(parsed, pos + 1)
            pos += 1
            continue
        prefix, body = (line[:1], line[1:]) if line else (" ", "")
        if prefix == " ":
            kind = LineKind.CONTEXT
            old_seen += 1
            new_seen += 1
        elif prefix == "-":
            kind = LineKind.DELETION
            old_seen += 1
        elif prefix == "+":
            kind = LineKind.ADDITION
            new_seen += 1
        else:
            raise ParseError(f"Invalid hunk line {line!r}", pos + 1)
        if old_seen > old_count or new_seen > new_count:
            raise ParseError(f"Hunk {header!r} has more lines than its header declares", pos + 1)
        parsed.append(DiffLine(kind=kind, text=body, index=len(parsed)))
        pos += 1

    # Trailing marker(s) after the last counted line.
    while pos < len(lines) and lines[pos].startswith("\\"):
        parsed = _mark_no_newline(parsed, pos + 1)
        pos += 1

    hunk = Hunk(
        header=header,
        old_start=old_start,
        old_count=old_count,
        new_start=new_start,
        new_count=new_count,
        lines=tuple(parsed),
        index=hunk_index,
    )
    return hunk, pos


def _mark_no_newline(parsed: list[DiffLine], line_number: int) -> list[DiffLine]:
    if not parsed:
        raise ParseError("No-newline marker before any hunk line", line_number)
    last = parsed[-1]
    parsed[-1] = DiffLine(kind=last.kind, text=last.text, index=last.index, no_newline=True)
    return parsed


def parse_untracked(output: str) -> tuple[str, ...]:
    """Parses NUL-separated ``git ls-files --others -z`` output."""
    return tuple(sorted(path for path in output.split("\0") if path))
