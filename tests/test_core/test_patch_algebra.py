# tests/test_core/test_patch_algebra.py
"""Tests for patch synthesis and its application through `PatchAlgebra`.
========================================================================

The first half checks the pure patch builders against hand-computed hunk
headers. The second half runs against a real temporary repository and
asserts on the resulting index and working-tree contents (read as bytes,
so CRLF content is compared exactly).
"""

import subprocess
from pathlib import Path

import pytest

from magi.core.DiffModel import ChangeKind, Section, parse_diff
from magi.core.Errors import PatchConflict
from magi.core.PatchAlgebra import (
    PatchAlgebra,
    apply_order,
    build_hunk_patch,
    build_lines_patch,
    file_header,
    synthesize_hunk,
)
from magi.core.Selection import FilesSelection, HunkSelection, HunksSelection, LinesSelection
from magi.integrations.GitBridge import GitBridge


MODIFIED = """\
diff --git a/f.txt b/f.txt
index 1111111..2222222 100644
--- a/f.txt
+++ b/f.txt
@@ -1,3 +1,3 @@
 one
-two
+TWO
 three
"""

NEW_FILE = """\
diff --git a/n.txt b/n.txt
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/n.txt
@@ -0,0 +1,2 @@
+first
+second
"""


# --- pure construction ---

@pytest.mark.parametrize(
    "selected, reverse, expected",
    [
        ({2}, False, ["@@ -1,3 +1,4 @@", " one", " two", "+TWO", " three"]),
        ({1}, False, ["@@ -1,3 +1,2 @@", " one", "-two", " three"]),
        ({2}, True, ["@@ -1,2 +1,3 @@", " one", "+TWO", " three"]),
        ({1}, True, ["@@ -1,3 +1,3 @@", " one", "-two", " TWO", " three"]),
    ],
    ids=["stage-addition", "stage-deletion", "unstage-addition", "unstage-deletion"],
)
def test_synthesize_hunk_counts(selected, reverse, expected) -> None:
    hunk = parse_diff(MODIFIED)[0].hunks[0]
    assert synthesize_hunk(hunk, selected, reverse) == expected


def test_synthesize_hunk_without_changes_is_none() -> None:
    hunk = parse_diff(MODIFIED)[0].hunks[0]
    assert synthesize_hunk(hunk, {0, 3}, reverse=False) is None
    assert synthesize_hunk(hunk, set(), reverse=True) is None


def test_synthesize_hunk_rejects_out_of_range_index() -> None:
    hunk = parse_diff(MODIFIED)[0].hunks[0]
    with pytest.raises(IndexError):
        synthesize_hunk(hunk, {1, 9}, reverse=False)


def test_build_hunk_patch_is_verbatim() -> None:
    change = parse_diff(MODIFIED)[0]
    assert build_hunk_patch(change, 0) == MODIFIED


def test_partial_patch_of_new_file_is_rewritten_as_modification() -> None:
    change = parse_diff(NEW_FILE)[0]

    assert file_header(change, partial=True) == [
        "diff --git a/n.txt b/n.txt",
        "--- a/n.txt",
        "+++ b/n.txt",
    ]
    patch = build_lines_patch(change, 0, (0,), reverse=True)
    assert patch == (
        "diff --git a/n.txt b/n.txt\n--- a/n.txt\n+++ b/n.txt\n"
        "@@ -1,1 +1,2 @@\n+first\n second\n"
    )


def test_full_line_selection_keeps_original_header() -> None:
    change = parse_diff(NEW_FILE)[0]
    patch = build_lines_patch(change, 0, (0, 1), reverse=True)
    assert patch is not None
    assert "new file mode 100644" in patch
    assert "--- /dev/null" in patch


RENAMED = """\
diff --git a/a.txt b/b.txt
similarity index 90%
rename from a.txt
rename to b.txt
index 1111111..2222222 100644
--- a/a.txt
+++ b/b.txt
@@ -1,3 +1,3 @@
 one
-two
+TWO
 three
"""


def test_hunk_of_renamed_file_is_rewritten_as_modification() -> None:
    change = parse_diff(RENAMED)[0]

    patch = build_hunk_patch(change, 0)

    assert patch.startswith("diff --git a/b.txt b/b.txt\n--- a/b.txt\n+++ b/b.txt\n@@ -1,3 +1,3 @@\n")
    assert "rename" not in patch
    assert "similarity" not in patch


def test_apply_order_is_unique_and_descending() -> None:
    assert apply_order((0, 2, 2, 1)) == [2, 1, 0]


# --- application against a real repository ---

def read_index(repo: Path, path: str) -> bytes:
    return subprocess.run(
        ["git", "show", f":{path}"], cwd=repo, capture_output=True, check=True
    ).stdout


def test_stage_single_addition_line(git_repo: Path, commit_file) -> None:
    commit_file(git_repo, "f.txt", "ctx\nold\nctx2\n")
    (git_repo / "f.txt").write_text("ctx\nnew\nctx2\n")
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    hunk = snapshot.file(Section.UNSTAGED, "f.txt").hunks[0]
    addition = next(line.index for line in hunk.lines if line.text == "new")

    message = PatchAlgebra(bridge, snapshot).stage(
        LinesSelection(Section.UNSTAGED, "f.txt", 0, (addition,))
    )

    assert message == "Staged 1 line in f.txt"
    assert read_index(git_repo, "f.txt") == b"ctx\nold\nnew\nctx2\n"
    assert (git_repo / "f.txt").read_text() == "ctx\nnew\nctx2\n"
    after = bridge.snapshot()
    assert [line.text for line in after.file(Section.STAGED, "f.txt").hunks[0].lines if line.is_change] == ["new"]
    assert [line.text for line in after.file(Section.UNSTAGED, "f.txt").hunks[0].lines if line.is_change] == ["old"]


def test_unstage_single_deletion_line(git_repo: Path, commit_file, run_git) -> None:
    commit_file(git_repo, "f.txt", "one\ntwo\nthree\n")
    (git_repo / "f.txt").write_text("one\nTWO\nthree\n")
    run_git(git_repo, "add", "f.txt")
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    hunk = snapshot.file(Section.STAGED, "f.txt").hunks[0]
    deletion = next(line.index for line in hunk.lines if line.text == "two")

    PatchAlgebra(bridge, snapshot).unstage(LinesSelection(Section.STAGED, "f.txt", 0, (deletion,)))

    assert read_index(git_repo, "f.txt") == b"one\ntwo\nTWO\nthree\n"


def test_discard_two_hunks(git_repo: Path, commit_file) -> None:
    original = "".join(f"line {i}\n" for i in range(1, 31))
    commit_file(git_repo, "long.txt", original)
    changed = original.replace("line 2\n", "line two\n").replace("line 25\n", "line 25\nextra\n")
    (git_repo / "long.txt").write_text(changed)
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    assert len(snapshot.file(Section.UNSTAGED, "long.txt").hunks) == 2

    message = PatchAlgebra(bridge, snapshot).discard(HunksSelection(Section.UNSTAGED, "long.txt", (1, 0)))

    assert message == "Discarded 2 hunks in long.txt"
    assert (git_repo / "long.txt").read_text() == original
    assert bridge.snapshot().is_clean


def unstaged_diff_text(repo: Path) -> str:
    return subprocess.run(
        ["git", "diff", "--no-color"], cwd=repo, capture_output=True, check=True, text=True
    ).stdout


def test_stage_then_unstage_whole_file(git_repo: Path, commit_file) -> None:
    original = "".join(f"line {i}\n" for i in range(1, 31))
    commit_file(git_repo, "f.txt", original)
    (git_repo / "f.txt").write_text(original.replace("line 3\n", "line three\n") + "line 31\n")
    bridge = GitBridge(str(git_repo))
    before = bridge.snapshot()
    before_text = unstaged_diff_text(git_repo)

    PatchAlgebra(bridge, before).stage(FilesSelection(("f.txt",)))
    staged = bridge.snapshot()
    assert [c.path for c in staged.staged] == ["f.txt"]
    assert staged.unstaged == ()

    PatchAlgebra(bridge, staged).unstage(FilesSelection(("f.txt",)))
    after = bridge.snapshot()
    assert after.staged == ()
    assert after.unstaged == before.unstaged
    assert unstaged_diff_text(git_repo) == before_text


@pytest.fixture
def staged_rename(git_repo: Path, commit_file, run_git) -> str:
    """Commits a.txt, renames it to b.txt and stages edits at lines 2 and 35."""
    original = "".join(f"line {i}\n" for i in range(1, 41))
    commit_file(git_repo, "a.txt", original)
    run_git(git_repo, "mv", "a.txt", "b.txt")
    edited = original.replace("line 2\n", "line two\n").replace("line 35\n", "line thirty-five\n")
    (git_repo / "b.txt").write_text(edited)
    run_git(git_repo, "add", "b.txt")
    return original


def staged_name_status(repo: Path) -> str:
    return subprocess.run(
        ["git", "diff", "--cached", "-M", "--name-status"], cwd=repo, capture_output=True, check=True, text=True
    ).stdout


def test_unstage_hunks_of_renamed_file_keeps_rename(git_repo: Path, staged_rename: str) -> None:
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    renamed = snapshot.file(Section.STAGED, "b.txt")
    assert renamed.old_path == "a.txt"
    assert len(renamed.hunks) == 2

    PatchAlgebra(bridge, snapshot).unstage(HunksSelection(Section.STAGED, "b.txt", (1, 0)))

    assert read_index(git_repo, "b.txt") == staged_rename.encode()
    assert staged_name_status(git_repo).split() == ["R100", "a.txt", "b.txt"]


def test_unstage_one_hunk_of_renamed_file(git_repo: Path, staged_rename: str) -> None:
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()

    PatchAlgebra(bridge, snapshot).unstage(HunkSelection(Section.STAGED, "b.txt", 0))

    assert read_index(git_repo, "b.txt") == staged_rename.replace("line 35\n", "line thirty-five\n").encode()
    assert staged_name_status(git_repo).split()[1:] == ["a.txt", "b.txt"]


def test_unstage_renamed_file_resets_both_paths(git_repo: Path, staged_rename: str) -> None:
    bridge = GitBridge(str(git_repo))

    PatchAlgebra(bridge, bridge.snapshot()).unstage(FilesSelection(("b.txt",)))

    after = bridge.snapshot()
    assert after.staged == ()
    assert read_index(git_repo, "a.txt") == staged_rename.encode()
    assert after.untracked == ("b.txt",)
    assert [(c.path, c.kind) for c in after.unstaged] == [("a.txt", ChangeKind.DELETED)]


def test_unstage_in_repository_without_commits(git_repo: Path, run_git) -> None:
    (git_repo / "n.txt").write_text("first\nsecond\n")
    run_git(git_repo, "add", "n.txt")
    bridge = GitBridge(str(git_repo))

    PatchAlgebra(bridge, bridge.snapshot()).unstage(FilesSelection(("n.txt",)))

    assert bridge.snapshot().untracked == ("n.txt",)


def test_unstage_one_line_of_new_file(git_repo: Path, commit_file, run_git) -> None:
    commit_file(git_repo, "base.txt", "base\n")
    (git_repo / "n.txt").write_text("first\nsecond\n")
    run_git(git_repo, "add", "n.txt")
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()

    PatchAlgebra(bridge, snapshot).unstage(LinesSelection(Section.STAGED, "n.txt", 0, (0,)))

    assert read_index(git_repo, "n.txt") == b"second\n"


def test_discard_untracked_file(git_repo: Path, commit_file) -> None:
    commit_file(git_repo, "keep.txt", "keep\n")
    (git_repo / "junk.txt").write_text("junk\n")
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    assert snapshot.untracked == ("junk.txt",)

    PatchAlgebra(bridge, snapshot).discard(FilesSelection(("junk.txt",)))

    assert not (git_repo / "junk.txt").exists()
    assert (git_repo / "keep.txt").exists()


def test_crlf_hunk_is_staged_byte_for_byte(git_repo: Path, commit_file) -> None:
    commit_file(git_repo, "w.txt", "one\r\ntwo\r\n")
    (git_repo / "w.txt").write_bytes(b"one\r\nTWO\r\n")
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()

    PatchAlgebra(bridge, snapshot).stage(HunkSelection(Section.UNSTAGED, "w.txt", 0))

    assert read_index(git_repo, "w.txt") == b"one\r\nTWO\r\n"


def test_stale_snapshot_raises_patch_conflict(git_repo: Path, commit_file, run_git) -> None:
    commit_file(git_repo, "f.txt", "a\nb\n")
    (git_repo / "f.txt").write_text("a\nB\n")
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    run_git(git_repo, "add", "f.txt")

    with pytest.raises(PatchConflict) as excinfo:
        PatchAlgebra(bridge, snapshot).stage(HunkSelection(Section.UNSTAGED, "f.txt", 0))

    assert excinfo.value.stderr
    assert read_index(git_repo, "f.txt") == b"a\nB\n"


def test_section_mismatch_is_rejected(git_repo: Path, commit_file) -> None:
    commit_file(git_repo, "f.txt", "a\n")
    (git_repo / "f.txt").write_text("b\n")
    bridge = GitBridge(str(git_repo))

    with pytest.raises(ValueError):
        PatchAlgebra(bridge, bridge.snapshot()).unstage(HunkSelection(Section.UNSTAGED, "f.txt", 0))


def test_discard_untracked_symlink_keeps_target(git_repo: Path, commit_file) -> None:
    commit_file(git_repo, "real.txt", "real\n")
    (git_repo / "link").symlink_to("real.txt")
    (git_repo / "outside").symlink_to(git_repo.parent)
    bridge = GitBridge(str(git_repo))
    snapshot = bridge.snapshot()
    assert snapshot.untracked == ("link", "outside")

    PatchAlgebra(bridge, snapshot).discard(FilesSelection(("link", "outside")))

    assert (git_repo / "real.txt").read_text() == "real\n"
    assert not (git_repo / "link").is_symlink()
    assert not (git_repo / "outside").is_symlink()
    assert git_repo.parent.is_dir()
