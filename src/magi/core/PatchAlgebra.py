# magi/core/PatchAlgebra.py
"""PatchAlgebra.py
=================
Turns a `Selection` into concrete index / working-tree mutations.

The module has two layers:

1. Pure patch construction (`build_hunk_patch`, `synthesize_hunk`,
   `build_lines_patch`). These operate on the immutable Diff Model and
   return patch text; they are tested without git.
2. `PatchAlgebra`, which dispatches a selection to the synchronous
   `GitBridge` (``git add`` / ``git reset`` / ``git checkout`` for whole
   files, ``git apply`` for hunk and line patches).

Patches are always written in the direction of the diff they came from
(old -> new). Unstage and discard apply them with ``--reverse``; line
synthesis therefore depends on the direction:

==============  ==========================  ==========================
unselected      forward (stage)             reverse (unstage/discard)
==============  ==========================  ==========================
addition        dropped                     kept as context
deletion        kept as context             dropped
==============  ==========================  ==========================

Several hunks of one file are applied highest index first, so every hunk
still waiting is positioned against content that has not moved yet.
"""

import logging
from typing import TYPE_CHECKING, Optional

from magi.core.DiffModel import ChangeKind, DiffLine, DiffSnapshot, FileChange, Hunk, LineKind, Section
from magi.core.Selection import (
    FilesSelection,
    HunkSelection,
    HunksSelection,
    LinesSelection,
    NoSelection,
    Selection,
)

if TYPE_CHECKING:
    from magi.integrations.GitBridge import GitBridge


logger = logging.getLogger("magi")


# ==================== Pure patch construction ====================

def _swap_side(name: str, prefix: str) -> str:
    """Rewrites ``b/x`` (or ``"b/x"``) to ``<prefix>/x`` keeping any quoting."""
    quoted = name.startswith('"')
    bare = name[1:] if quoted else name
    if bare[:2] in ("a/", "b/"):
        bare = prefix + "/" + bare[2:]
    return ('"' + bare) if quoted else bare


def file_header(change: FileChange, partial: bool = False) -> list[str]:
    """Returns the file header lines for a patch of ``change``.

    A hunk of a renamed or copied file is rewritten as a modification of
    the new path, so applying or reversing it leaves the rename alone.

    A partial patch of an added or deleted file cannot create or remove
    the file, so its header is rewritten as a plain modification: the
    creation/deletion mode and index lines are dropped and ``/dev/null``
    is replaced by the path on the other side.
    """
    header = list(change.header)
    if change.kind in (ChangeKind.RENAMED, ChangeKind.COPIED):
        plus = next(line[4:] for line in header if line.startswith("+++ "))
        minus = _swap_side(plus, "a")
        return [f"diff --git {minus} {plus}", "--- " + minus, "+++ " + plus]
    if not partial or change.kind not in (ChangeKind.ADDED, ChangeKind.DELETED):
        return header

    minus = next((line[4:] for line in header if line.startswith("--- ")), "/dev/null")
    plus = next((line[4:] for line in header if line.startswith("+++ ")), "/dev/null")
    if minus == "/dev/null":
        minus = _swap_side(plus, "a")
    if plus == "/dev/null":
        plus = _swap_side(minus, "b")

    rewritten: list[str] = []
    for line in header:
        if line.startswith(("new file mode ", "deleted file mode ", "index ")):
            continue
        if line.startswith("--- "):
            line = "--- " + minus
        elif line.startswith("+++ "):
            line = "+++ " + plus
        rewritten.append(line)
    return rewritten


def format_hunk_header(old_start: int, old_count: int, new_start: int, new_count: int) -> str:
    return f"@@ -{old_start},{old_count} +{new_start},{new_count} @@"


def _join(lines: list[str]) -> str:
    return "\n".join(lines) + "\n"


def build_hunk_patch(change: FileChange, hunk_index: int) -> str:
    """Full-fidelity patch containing exactly one hunk of ``change``."""
    hunk = change.hunks[hunk_index]
    lines = file_header(change) + [hunk.header]
    for line in hunk.lines:
        lines.extend(line.render())
    return _join(lines)


def synthesize_hunk(hunk: Hunk, selected: set[int], reverse: bool) -> Optional[list[str]]:
    """Builds the lines of a hunk that carries only the selected changes.

    Context lines are kept. A selected addition or deletion is kept as is.
    An unselected change is either turned into context or dropped,
    depending on ``reverse`` (see the module table). The header counters
    are recomputed from what remains.

    Args:
        hunk (Hunk): Source hunk.
        selected (set[int]): Line indices to keep as changes; indices of
            context lines are ignored.
        reverse (bool): True when the patch will be applied with ``--reverse``.

    Returns:
        Optional[list[str]]: Header plus body lines, or None when no
        selected index refers to a change line (nothing to apply).

    Raises:
        IndexError: If a selected index is outside the hunk.
    """
    for index in selected:
        if not 0 <= index < len(hunk.lines):
            raise IndexError(f"line index {index} out of range for hunk {hunk.index}")
    if not any(hunk.lines[index].is_change for index in selected):
        return None

    # An unselected line of this kind becomes context; the other kind is dropped.
    keep_as_context = LineKind.ADDITION if reverse else LineKind.DELETION

    body: list[DiffLine] = []
    old_count = new_count = 0
    for line in hunk.lines:
        if line.kind is LineKind.CONTEXT or line.index in selected:
            kept = line
        elif line.kind is keep_as_context:
            kept = DiffLine(LineKind.CONTEXT, line.text, line.index, line.no_newline)
        else:
            continue
        body.append(kept)
        if kept.kind is not LineKind.ADDITION:
            old_count += 1
        if kept.kind is not LineKind.DELETION:
            new_count += 1

    old_start = hunk.old_start
    new_start = hunk.new_start
    if old_count and not old_start:
        old_start = 1
    if new_count and not new_start:
        new_start = 1

    lines = [format_hunk_header(old_start, old_count, new_start, new_count)]
    for line in body:
        lines.extend(line.render())
    return lines


def build_lines_patch(
    change: FileChange, hunk_index: int, line_indices: tuple[int, ...], reverse: bool
) -> Optional[str]:
    """Patch for a subset of one hunk's lines, or None if it would be empty."""
    hunk = change.hunks[hunk_index]
    body = synthesize_hunk(hunk, set(line_indices), reverse)
    if body is None:
        return None
    selected_changes = {i for i in line_indices if hunk.lines[i].is_change}
    partial = selected_changes != set(hunk.change_indices)
    return _join(file_header(change, partial=partial) + body)


def apply_order(hunk_indices: tuple[int, ...]) -> list[int]:
    """Unique hunk indices, highest first."""
    return sorted(set(hunk_indices), reverse=True)


# ==================== PatchAlgebra Class ====================
class PatchAlgebra:
    """Applies selections against one snapshot through a `GitBridge`.

    An instance is built for a single key event: the snapshot it is given
    must be the one the selection was resolved against, and the caller
    refreshes after every call.
    """

    def __init__(self, bridge: "GitBridge", snapshot: DiffSnapshot) -> None:
        self.bridge = bridge
        self.snapshot = snapshot

    def stage(self, selection: Selection) -> str:
        if isinstance(selection, FilesSelection):
            self.bridge.stage_paths(list(selection.paths))
            return f"Staged {_count(selection.paths, 'file')}"
        return self._apply(selection, Section.UNSTAGED, cached=True, reverse=False, verb="Staged")

    def unstage(self, selection: Selection) -> str:
        if isinstance(selection, FilesSelection):
            self.bridge.unstage_paths(self._with_rename_sources(selection.paths))
            return f"Unstaged {_count(selection.paths, 'file')}"
        return self._apply(selection, Section.STAGED, cached=True, reverse=True, verb="Unstaged")

    def discard(self, selection: Selection) -> str:
        if isinstance(selection, FilesSelection):
            untracked = [path for path in selection.paths if path in self.snapshot.untracked]
            tracked = [path for path in selection.paths if path not in self.snapshot.untracked]
            if tracked:
                self.bridge.restore_paths(tracked)
            if untracked:
                self.bridge.remove_untracked(untracked)
            return f"Discarded {_count(selection.paths, 'file')}"
        return self._apply(selection, Section.UNSTAGED, cached=False, reverse=True, verb="Discarded")

    def _with_rename_sources(self, paths: tuple[str, ...]) -> list[str]:
        """Adds the old path of every staged rename, so both sides are reset."""
        result = list(paths)
        for change in self.snapshot.staged:
            if change.path in paths and change.kind is ChangeKind.RENAMED and change.old_path:
                result.append(change.old_path)
        return result

    def _apply(self, selection: Selection, section: Section, cached: bool, reverse: bool, verb: str) -> str:
        if isinstance(selection, NoSelection):
            return "Nothing selected"
        if not isinstance(selection, (HunkSelection, HunksSelection, LinesSelection)):
            raise TypeError(f"unsupported selection {selection!r}")
        if selection.section is not section:
            raise ValueError(f"{verb.lower()} does not apply to {selection.section.value} changes")

        change = self.snapshot.file(section, selection.path)

        if isinstance(selection, HunkSelection):
            self.bridge.apply_patch(build_hunk_patch(change, selection.hunk_index), cached=cached, reverse=reverse)
            return f"{verb} hunk in {change.path}"

        if isinstance(selection, HunksSelection):
            order = apply_order(selection.hunk_indices)
            for hunk_index in order:
                logger.debug(f"Applying hunk {hunk_index} of {change.path} (cached={cached}, reverse={reverse})")
                self.bridge.apply_patch(build_hunk_patch(change, hunk_index), cached=cached, reverse=reverse)
            return f"{verb} {_count(order, 'hunk')} in {change.path}"

        patch = build_lines_patch(change, selection.hunk_index, selection.line_indices, reverse)
        if patch is None:
            return "Nothing selected"
        self.bridge.apply_patch(patch, cached=cached, reverse=reverse)
        return f"{verb} {_count(selection.line_indices, 'line')} in {change.path}"


def _count(items, noun: str) -> str:
    n = len(items)
    return f"{n} {noun}" if n == 1 else f"{n} {noun}s"
