# tests/test_core/test_selection.py
"""Unit tests for status rows and selection resolution.
======================================================

The rows are built from a parsed snapshot with:

- one untracked file,
- ``a.txt`` unstaged with two hunks,
- ``b.txt`` unstaged with one hunk,
- ``c.txt`` staged with one hunk.

Tests locate rows by content rather than by position so they do not depend
on how many separator rows the builder emits.
"""

import pytest

from magi.core.DiffModel import DiffSnapshot, LineKind, Section, parse_diff
from magi.core.Selection import (
    FilesSelection,
    HunkSelection,
    HunksSelection,
    LinesSelection,
    NoSelection,
    RowKind,
    SelectionContext,
    StatusRow,
    build_status_rows,
    cursor_anchor,
    resolve_point,
    resolve_range,
    restore_cursor,
)


UNSTAGED = """\
diff --git a/a.txt b/a.txt
--- a/a.txt
+++ b/a.txt
@@ -1,3 +1,3 @@
 ctx
-old
+new
 ctx2
@@ -20,2 +20,3 @@
 twenty
+added
 twenty-one
diff --git a/b.txt b/b.txt
--- a/b.txt
+++ b/b.txt
@@ -1 +1 @@
-b-old
+b-new
"""

STAGED = """\
diff --git a/c.txt b/c.txt
--- a/c.txt
+++ b/c.txt
@@ -1 +1,2 @@
 c
+c2
"""


@pytest.fixture
def snapshot() -> DiffSnapshot:
    return DiffSnapshot(
        untracked=("u.txt",),
        unstaged=parse_diff(UNSTAGED),
        staged=parse_diff(STAGED),
        head_branch="main",
    )


@pytest.fixture
def rows(snapshot: DiffSnapshot) -> list[StatusRow]:
    return build_status_rows(snapshot)


def find(rows, kind, section=None, path=None, hunk=None, line=None) -> int:
    for position, row in enumerate(rows):
        if (
            row.kind is kind
            and (section is None or row.section is section)
            and (path is None or row.path == path)
            and (hunk is None or row.hunk_index == hunk)
            and (line is None or row.line_index == line)
        ):
            return position
    raise AssertionError(f"no {kind} row for {section} {path} {hunk} {line}")


def test_rows_layout(rows: list[StatusRow]) -> None:
    assert rows[0].kind is RowKind.HEAD
    headers = [row.text for row in rows if row.kind is RowKind.SECTION_HEADER]
    assert headers == ["Untracked files (1)", "Unstaged changes (2)", "Staged changes (1)"]
    diff_lines = [row for row in rows if row.kind is RowKind.DIFF_LINE and row.path == "a.txt"]
    assert [row.text for row in diff_lines[:4]] == [" ctx", "-old", "+new", " ctx2"]


def test_collapsed_file_hides_hunks(snapshot: DiffSnapshot) -> None:
    rows = build_status_rows(snapshot, {(Section.UNSTAGED, "a.txt")})
    assert not any(row.path == "a.txt" and row.kind is RowKind.HUNK_HEADER for row in rows)
    assert any(row.path == "b.txt" and row.kind is RowKind.HUNK_HEADER for row in rows)


# --- point selection ---

def test_point_on_file_selects_file(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.FILE, Section.UNSTAGED, "b.txt")
    assert resolve_point(rows, cursor, SelectionContext.STAGEABLE) == FilesSelection(("b.txt",))


def test_point_on_untracked_file(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.FILE, Section.UNTRACKED, "u.txt")
    assert resolve_point(rows, cursor, SelectionContext.STAGEABLE) == FilesSelection(("u.txt",))
    assert resolve_point(rows, cursor, SelectionContext.UNSTAGEABLE) == NoSelection()


def test_point_on_section_header_selects_all_files(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.SECTION_HEADER, Section.UNSTAGED)
    assert resolve_point(rows, cursor, SelectionContext.STAGEABLE) == FilesSelection(("a.txt", "b.txt"))


def test_point_on_hunk_header(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.HUNK_HEADER, Section.UNSTAGED, "a.txt", hunk=1)
    assert resolve_point(rows, cursor, SelectionContext.STAGEABLE) == HunkSelection(Section.UNSTAGED, "a.txt", 1)


def test_point_on_change_line(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=2)
    assert rows[cursor].line_kind is LineKind.ADDITION
    assert resolve_point(rows, cursor, SelectionContext.STAGEABLE) == LinesSelection(
        Section.UNSTAGED, "a.txt", 0, (2,)
    )


def test_point_on_context_line_selects_its_hunk(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=1, line=0)
    assert rows[cursor].line_kind is LineKind.CONTEXT
    assert resolve_point(rows, cursor, SelectionContext.STAGEABLE) == HunkSelection(
        Section.UNSTAGED, "a.txt", 1
    )


def test_point_in_wrong_section_is_no_selection(rows: list[StatusRow]) -> None:
    staged_hunk = find(rows, RowKind.HUNK_HEADER, Section.STAGED, "c.txt")
    assert resolve_point(rows, staged_hunk, SelectionContext.STAGEABLE) == NoSelection()
    assert resolve_point(rows, staged_hunk, SelectionContext.DISCARDABLE) == NoSelection()
    assert resolve_point(rows, staged_hunk, SelectionContext.UNSTAGEABLE) == HunkSelection(
        Section.STAGED, "c.txt", 0
    )


def test_point_out_of_range(rows: list[StatusRow]) -> None:
    assert resolve_point(rows, len(rows) + 5, SelectionContext.STAGEABLE) == NoSelection()
    assert resolve_point([], 0, SelectionContext.STAGEABLE) == NoSelection()


# --- range selection ---

def test_range_of_lines_within_hunk(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=0)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=1)
    assert resolve_range(rows, start, end, SelectionContext.STAGEABLE) == LinesSelection(
        Section.UNSTAGED, "a.txt", 0, (1,)
    )


def test_range_direction_does_not_matter(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=1)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=0)
    assert resolve_range(rows, start, end, SelectionContext.STAGEABLE) == resolve_range(
        rows, end, start, SelectionContext.STAGEABLE
    )


def test_range_covering_every_change_promotes_to_hunk(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=1)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=2)
    assert resolve_range(rows, start, end, SelectionContext.STAGEABLE) == HunkSelection(
        Section.UNSTAGED, "a.txt", 0
    )


def test_range_including_hunk_header_is_hunk(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.HUNK_HEADER, Section.UNSTAGED, "a.txt", hunk=0)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=1)
    assert resolve_range(rows, start, end, SelectionContext.STAGEABLE) == HunkSelection(
        Section.UNSTAGED, "a.txt", 0
    )


def test_range_across_hunks_is_hunks_descending(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=0, line=2)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=1, line=1)
    assert resolve_range(rows, start, end, SelectionContext.STAGEABLE) == HunksSelection(
        Section.UNSTAGED, "a.txt", (1, 0)
    )


def test_range_across_files_is_files(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=1, line=1)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "b.txt", hunk=0, line=0)
    assert resolve_range(rows, start, end, SelectionContext.STAGEABLE) == FilesSelection(("a.txt", "b.txt"))


def test_range_ignores_rows_of_other_sections(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "b.txt", hunk=0, line=1)
    end = find(rows, RowKind.DIFF_LINE, Section.STAGED, "c.txt", hunk=0, line=1)
    assert resolve_range(rows, start, end, SelectionContext.UNSTAGEABLE) == FilesSelection(("c.txt",))


def test_range_of_only_context_is_no_selection(rows: list[StatusRow]) -> None:
    line = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "a.txt", hunk=1, line=0)
    assert resolve_range(rows, line, line, SelectionContext.STAGEABLE) == NoSelection()


def test_range_is_clamped_to_rows(rows: list[StatusRow]) -> None:
    start = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "b.txt", hunk=0, line=1)
    end = find(rows, RowKind.DIFF_LINE, Section.UNSTAGED, "b.txt", hunk=0, line=0)
    assert resolve_range(rows, end, start, SelectionContext.STAGEABLE) == HunkSelection(
        Section.UNSTAGED, "b.txt", 0
    )
    last = len(rows) - 1
    assert resolve_range(rows, last, last + 10, SelectionContext.UNSTAGEABLE) == HunkSelection(
        Section.STAGED, "c.txt", 0
    )


# --- cursor restoration ---

def test_restore_cursor_follows_hunk(snapshot: DiffSnapshot, rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.HUNK_HEADER, Section.UNSTAGED, "b.txt")
    anchor = cursor_anchor(rows, cursor)
    # Dropping a.txt shifts every later row up.
    smaller = DiffSnapshot(unstaged=snapshot.unstaged[1:], staged=snapshot.staged)
    new_rows = build_status_rows(smaller)
    restored = restore_cursor(new_rows, anchor, cursor)
    assert new_rows[restored].kind is RowKind.HUNK_HEADER
    assert new_rows[restored].path == "b.txt"


def test_restore_cursor_falls_back_to_file_in_other_section(rows: list[StatusRow]) -> None:
    cursor = find(rows, RowKind.FILE, Section.UNSTAGED, "b.txt")
    anchor = cursor_anchor(rows, cursor)
    moved = DiffSnapshot(staged=parse_diff(UNSTAGED)[1:])
    new_rows = build_status_rows(moved)
    restored = restore_cursor(new_rows, anchor, cursor)
    assert new_rows[restored].section is Section.STAGED
    assert new_rows[restored].path == "b.txt"


def test_restore_cursor_clamps_when_nothing_matches(rows: list[StatusRow]) -> None:
    anchor = cursor_anchor(rows, len(rows) - 1)
    assert restore_cursor([StatusRow(RowKind.HEAD)], anchor, 40) == 0
    assert restore_cursor([], anchor, 3) == 0
