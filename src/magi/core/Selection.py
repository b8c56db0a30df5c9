# magi/core/Selection.py
"""Selection.py
==============
Rendered status rows and the resolver that turns a cursor position or a
visual range over those rows into a `Selection`.

The status view is a flat list of `StatusRow` objects built from a
`DiffSnapshot` by `build_status_rows`. Every row remembers which section,
file, hunk and hunk line it was rendered from, so resolution is a pure
function of ``(rows, cursor[, anchor], context)``; it never touches git and
never mutates anything.

Selections are a closed set of frozen dataclasses:

- `NoSelection`
- `FilesSelection` (whole paths)
- `HunkSelection` (one hunk of one file)
- `HunksSelection` (several hunks of one file, highest index first)
- `LinesSelection` (change lines of one hunk)

A selection is only valid for the snapshot its rows were built from.
"""

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from magi.core.DiffModel import DiffSnapshot, FileChange, LineKind, Section


class RowKind(enum.Enum):
    HEAD = "head"
    SECTION_HEADER = "section"
    FILE = "file"
    HUNK_HEADER = "hunk"
    DIFF_LINE = "line"
    EMPTY = "empty"


@dataclass(frozen=True)
class StatusRow:
    kind: RowKind
    text: str = ""
    section: Optional[Section] = None
    path: Optional[str] = None
    hunk_index: Optional[int] = None
    line_index: Optional[int] = None
    line_kind: Optional[LineKind] = None


class SelectionContext(enum.Enum):
    """The action a selection is resolved for; limits which sections count."""

    STAGEABLE = "stage"
    UNSTAGEABLE = "unstage"
    DISCARDABLE = "discard"

    @property
    def sections(self) -> frozenset[Section]:
        if self is SelectionContext.UNSTAGEABLE:
            return frozenset({Section.STAGED})
        return frozenset({Section.UNTRACKED, Section.UNSTAGED})


# ==================== Selection variants ====================

@dataclass(frozen=True)
class NoSelection:
    pass


@dataclass(frozen=True)
class FilesSelection:
    paths: tuple[str, ...]


@dataclass(frozen=True)
class HunkSelection:
    section: Section
    path: str
    hunk_index: int


@dataclass(frozen=True)
class HunksSelection:
    section: Section
    path: str
    hunk_indices: tuple[int, ...]


@dataclass(frozen=True)
class LinesSelection:
    section: Section
    path: str
    hunk_index: int
    line_indices: tuple[int, ...]


Selection = Union[NoSelection, FilesSelection, HunkSelection, HunksSelection, LinesSelection]

SECTION_TITLES = {
    Section.UNTRACKED: "Untracked files",
    Section.UNSTAGED: "Unstaged changes",
    Section.STAGED: "Staged changes",
}


# ==================== Row building ====================

def build_status_rows(
    snapshot: DiffSnapshot,
    collapsed: Iterable[tuple[Section, str]] = (),
) -> list[StatusRow]:
    """Flattens a snapshot into display rows.

    Args:
        snapshot (DiffSnapshot): Result of the latest refresh.
        collapsed: ``(section, path)`` pairs whose hunks are hidden.

    Returns:
        list[StatusRow]: Rows in display order. Empty sections are omitted.
    """
    folded = set(collapsed)
    rows: list[StatusRow] = []
    if snapshot.head_branch:
        rows.append(StatusRow(RowKind.HEAD, text=f"Head:     {snapshot.head_branch}"))

    if snapshot.untracked:
        rows.append(StatusRow(RowKind.EMPTY))
        rows.append(_section_header(Section.UNTRACKED, len(snapshot.untracked)))
        for path in snapshot.untracked:
            rows.append(StatusRow(RowKind.FILE, text=path, section=Section.UNTRACKED, path=path))

    for section in (Section.UNSTAGED, Section.STAGED):
        files = snapshot.files(section)
        if not files:
            continue
        rows.append(StatusRow(RowKind.EMPTY))
        rows.append(_section_header(section, len(files)))
        for change in files:
            rows.extend(_file_rows(section, change, (section, change.path) in folded))
    return rows


def _section_header(section: Section, count: int) -> StatusRow:
    return StatusRow(RowKind.SECTION_HEADER, text=f"{SECTION_TITLES[section]} ({count})", section=section)


def _file_rows(section: Section, change: FileChange, folded: bool) -> list[StatusRow]:
    label = change.path
    if change.old_path and change.old_path != change.path:
        label = f"{change.old_path} -> {change.path}"
    rows = [
        StatusRow(
            RowKind.FILE,
            text=f"{change.kind.value:<10} {label}",
            section=section,
            path=change.path,
        )
    ]
    if folded:
        return rows
    for hunk in change.hunks:
        rows.append(
            StatusRow(
                RowKind.HUNK_HEADER,
                text=hunk.header,
                section=section,
                path=change.path,
                hunk_index=hunk.index,
            )
        )
        for line in hunk.lines:
            rows.append(
                StatusRow(
                    RowKind.DIFF_LINE,
                    text=line.kind.value + line.text,
                    section=section,
                    path=change.path,
                    hunk_index=hunk.index,
                    line_index=line.index,
                    line_kind=line.kind,
                )
            )
    return rows


# ==================== Resolution ====================

def _section_paths(rows: list[StatusRow], section: Section) -> list[str]:
    return [row.path for row in rows if row.kind is RowKind.FILE and row.section is section and row.path]


def resolve_point(rows: list[StatusRow], cursor: int, context: SelectionContext) -> Selection:
    """Resolves the smallest actionable unit under the cursor.

    A section header selects all of its files, a file row the file, a hunk
    header or a context line the enclosing hunk, and an added or removed
    line that single line. Blank rows and rows of sections the action does
    not apply to resolve to `NoSelection`.
    """
    if not 0 <= cursor < len(rows):
        return NoSelection()
    row = rows[cursor]
    if row.section not in context.sections:
        return NoSelection()

    if row.kind is RowKind.SECTION_HEADER:
        paths = _section_paths(rows, row.section)
        return FilesSelection(tuple(paths)) if paths else NoSelection()
    if row.kind is RowKind.FILE and row.path:
        return FilesSelection((row.path,))
    if row.kind is RowKind.HUNK_HEADER and row.path and row.hunk_index is not None:
        return HunkSelection(row.section, row.path, row.hunk_index)
    if row.kind is RowKind.DIFF_LINE and row.path and row.hunk_index is not None:
        if row.line_kind is LineKind.CONTEXT or row.line_index is None:
            return HunkSelection(row.section, row.path, row.hunk_index)
        return LinesSelection(row.section, row.path, row.hunk_index, (row.line_index,))
    return NoSelection()


def resolve_range(
    rows: list[StatusRow],
    anchor: int,
    cursor: int,
    context: SelectionContext,
) -> Selection:
    """Resolves a visual range (anchor to cursor, either direction).

    Rules, in order:

    1. Rows from more than one file, or any file/section header row,
       give a `FilesSelection` of every file touched.
    2. Rows from several hunks of one file give a `HunksSelection` of every
       touched hunk, whole, highest index first.
    3. Rows within one hunk give a `HunkSelection` when the hunk header is
       included or every change line is covered, otherwise a
       `LinesSelection` of the covered change lines.
    """
    if anchor == cursor:
        return resolve_point(rows, cursor, context)
    last = len(rows) - 1
    lo, hi = sorted((max(0, min(anchor, last)), max(0, min(cursor, last))))
    picked = [
        row for row in rows[lo:hi + 1]
        if row.section in context.sections and row.kind is not RowKind.EMPTY
    ]
    if not picked:
        return NoSelection()

    files: list[str] = []
    whole_file = False
    for row in picked:
        if row.kind is RowKind.SECTION_HEADER and row.section is not None:
            whole_file = True
            targets = _section_paths(rows, row.section)
        else:
            whole_file = whole_file or row.kind is RowKind.FILE
            targets = [row.path] if row.path else []
        for path in targets:
            if path not in files:
                files.append(path)

    if not files:
        return NoSelection()
    if whole_file or len(files) > 1:
        return FilesSelection(tuple(files))

    path = files[0]
    section = picked[0].section
    assert section is not None
    hunks = sorted({row.hunk_index for row in picked if row.hunk_index is not None}, reverse=True)
    if len(hunks) > 1:
        return HunksSelection(section, path, tuple(hunks))

    hunk_index = hunks[0]
    if any(row.kind is RowKind.HUNK_HEADER for row in picked):
        return HunkSelection(section, path, hunk_index)

    chosen = sorted(
        row.line_index for row in picked
        if row.line_index is not None and row.line_kind is not LineKind.CONTEXT
    )
    if not chosen:
        return NoSelection()
    all_changes = [
        row.line_index for row in rows
        if row.kind is RowKind.DIFF_LINE and row.section is section and row.path == path
        and row.hunk_index == hunk_index and row.line_kind is not LineKind.CONTEXT
    ]
    if len(chosen) == len(all_changes):
        return HunkSelection(section, path, hunk_index)
    return LinesSelection(section, path, hunk_index, tuple(chosen))


# ==================== Cursor restoration ====================

def cursor_anchor(rows: list[StatusRow], cursor: int) -> Optional[StatusRow]:
    """Returns the row to look for again after the rows are rebuilt."""
    if 0 <= cursor < len(rows):
        return rows[cursor]
    return None


def restore_cursor(rows: list[StatusRow], anchor: Optional[StatusRow], fallback: int) -> int:
    """Finds the best row matching ``anchor`` in freshly built rows.

    Tries the same hunk, then the same file in the same section, then the
    same file in any section; otherwise clamps ``fallback`` into range.
    """
    if not rows:
        return 0
    if anchor is not None and anchor.path is not None:
        candidates = (
            lambda r: r.section is anchor.section and r.path == anchor.path
            and r.hunk_index == anchor.hunk_index and r.kind is RowKind.HUNK_HEADER,
            lambda r: r.section is anchor.section and r.path == anchor.path and r.kind is RowKind.FILE,
            lambda r: r.path == anchor.path and r.kind is RowKind.FILE,
        )
        for matches in candidates:
            for position, row in enumerate(rows):
                if matches(row):
                    return position
    elif anchor is not None and anchor.kind is RowKind.SECTION_HEADER:
        for position, row in enumerate(rows):
            if row.kind is RowKind.SECTION_HEADER and row.section is anchor.section:
                return position
    return max(0, min(fallback, len(rows) - 1))
