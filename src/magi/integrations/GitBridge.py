# magi/integrations/GitBridge.py
"""GitBridge.py
========================
Synchronous git command executor.

`GitBridge` is the only place that runs short-lived, local git commands:
reading the three status listings, applying patches built by the Patch
Algebra, whole-file stage/unstage/discard, and branch create/rename/delete/
checkout. Every call goes through `safe_run` and finishes inside a UI tick;
nothing here touches the network. Long-running or interactive commands
(commit with editor, push, pull, fetch) go through the PTY orchestrator.

Failures are translated at this boundary:

- ``git apply`` rejecting a patch raises `PatchConflict`,
- any other non-zero exit raises `GitCommandError`,
- unparsable diff output raises `ParseError` (from the Diff Model).
"""

import functools
import logging
import os
from pathlib import Path
from typing import Any, Optional

from magi.core.DiffModel import DiffSnapshot, FileChange, parse_diff, parse_untracked
from magi.core.Errors import GitCommandError, PatchConflict
from magi.utils.utils import safe_run


logger = logging.getLogger("magi")

# Force the prefixes and layout the parser expects, whatever the user's config says.
DIFF_ARGS = [
    "diff",
    "--no-color",
    "--no-ext-diff",
    "--src-prefix=a/",
    "--dst-prefix=b/",
]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


# ================= GitBridge Class ==============================
class GitBridge:
    """Runs local git commands for one repository.

    Args:
        repo_dir (str): Top-level directory of the working tree.
        config (dict): Application configuration; ``config["git"]`` supplies
            the binary name and extra environment variables.
    """

    def __init__(self, repo_dir: str, config: Optional[dict[str, Any]] = None):
        self.repo_dir: str = repo_dir
        self.config: dict[str, Any] = config or {}
        git_config = self.config.get("git", {})
        self.git_binary: str = git_config.get("binary", "git")
        env = dict(os.environ)
        env.update({str(k): str(v) for k, v in git_config.get("env", {}).items()})
        env.update({"LANG": "C", "LC_ALL": "C", "GIT_OPTIONAL_LOCKS": "0"})
        self._run = functools.partial(safe_run, cwd=repo_dir, env=env)

    @staticmethod
    def find_repo_root(path: str, git_binary: str = "git") -> Optional[str]:
        """Returns the top-level directory of the repository containing ``path``."""
        res = safe_run([git_binary, "rev-parse", "--show-toplevel"], cwd=path)
        if res.returncode == 0 and res.stdout.strip():
            return res.stdout.strip()
        return None

    # ------------------------------------------------------------------ running
    def _git(self, *args: str) -> list[str]:
        return [self.git_binary, "-c", "core.quotepath=false", *args]

    def run(self, *args: str):
        """Runs git with text I/O and returns the CompletedProcess."""
        cmd = self._git(*args)
        logger.debug(f"git: {' '.join(cmd[1:])}")
        return self._run(cmd)

    def run_raw(self, *args: str, input_bytes: Optional[bytes] = None):
        """Runs git with byte I/O (diffs and patches)."""
        cmd = self._git(*args)
        logger.debug(f"git (raw): {' '.join(cmd[1:])}")
        return self._run(cmd, raw=True, input=input_bytes)

    def _check(self, res, fallback: str) -> None:
        if res.returncode != 0:
            stderr = res.stderr if isinstance(res.stderr, str) else _decode(res.stderr or b"")
            message = stderr.strip() or fallback
            logger.warning(f"git exited with {res.returncode}: {message}")
            raise GitCommandError(message, res.returncode)

    # ------------------------------------------------------------------ reading
    def unstaged_diff(self) -> tuple[FileChange, ...]:
        """Index -> working tree."""
        res = self.run_raw(*DIFF_ARGS)
        self._check(res, "git diff failed")
        return parse_diff(_decode(res.stdout))

    def staged_diff(self) -> tuple[FileChange, ...]:
        """HEAD -> index. Also valid before the first commit."""
        res = self.run_raw(*DIFF_ARGS, "--cached", "-M")
        self._check(res, "git diff --cached failed")
        return parse_diff(_decode(res.stdout))

    def untracked_files(self) -> tuple[str, ...]:
        res = self.run_raw("ls-files", "--others", "--exclude-standard", "-z")
        self._check(res, "git ls-files failed")
        return parse_untracked(_decode(res.stdout))

    def snapshot(self) -> DiffSnapshot:
        """Reads all three listings for one refresh.

        Raises:
            ParseError: If either diff cannot be parsed.
            GitCommandError: If git itself fails.
        """
        return DiffSnapshot(
            untracked=self.untracked_files(),
            unstaged=self.unstaged_diff(),
            staged=self.staged_diff(),
            head_branch=self.current_branch(),
        )

    def has_head(self) -> bool:
        return self.run("rev-parse", "--verify", "-q", "HEAD").returncode == 0

    def has_staged_changes(self) -> bool:
        res = self.run("diff", "--cached", "--quiet")
        return res.returncode == 1

    def current_branch(self) -> Optional[str]:
        """Short branch name, ``"(detached)"`` or None outside a repository."""
        res = self.run("symbolic-ref", "--short", "-q", "HEAD")
        if res.returncode == 0 and res.stdout.strip():
            return res.stdout.strip()
        res = self.run("rev-parse", "--short", "HEAD")
        if res.returncode == 0 and res.stdout.strip():
            return f"(detached {res.stdout.strip()})"
        return None

    def upstream(self) -> Optional[tuple[str, str]]:
        """``(remote, branch)`` of the current branch's upstream, if configured."""
        res = self.run("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")
        if res.returncode != 0 or "/" not in res.stdout.strip():
            return None
        remote, _, branch = res.stdout.strip().partition("/")
        return remote, branch

    def remotes(self) -> list[str]:
        res = self.run("remote")
        if res.returncode != 0:
            return []
        return [line.strip() for line in res.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------------ patches
    def apply_patch(self, patch: str, cached: bool, reverse: bool) -> None:
        """Feeds ``patch`` to ``git apply`` on stdin.

        Args:
            patch (str): Unified diff for a single file.
            cached (bool): Apply to the index instead of the working tree.
            reverse (bool): Apply the inverse of the patch.

        Raises:
            PatchConflict: If git refuses the patch.
        """
        args = ["apply", "--whitespace=nowarn"]
        if cached:
            args.append("--cached")
        if reverse:
            args.append("--reverse")
        args.append("-")
        res = self.run_raw(*args, input_bytes=_encode(patch))
        if res.returncode != 0:
            stderr = _decode(res.stderr or b"").strip()
            logger.warning(f"git apply rejected patch (cached={cached}, reverse={reverse}): {stderr}")
            logger.debug(f"Rejected patch:\n{patch}")
            raise PatchConflict(
                "Patch does not apply; refresh and select again", stderr=stderr
            )

    # ------------------------------------------------------------------ whole files
    def stage_paths(self, paths: list[str]) -> None:
        self._check(self.run("add", "--", *paths), "Failed to stage files")

    def unstage_paths(self, paths: list[str]) -> None:
        if self.has_head():
            res = self.run("reset", "-q", "HEAD", "--", *paths)
        else:
            res = self.run("rm", "--cached", "-q", "-r", "--", *paths)
        self._check(res, "Failed to unstage files")

    def restore_paths(self, paths: list[str]) -> None:
        """Restores working-tree files from the index."""
        self._check(self.run("checkout", "--", *paths), "Failed to discard changes")

    def remove_untracked(self, paths: list[str]) -> None:
        """Deletes untracked files. Paths must stay inside the working tree.

        Only the directory part of a path is resolved: an untracked symlink
        is removed itself, never the file it points to.
        """
        root = Path(self.repo_dir).resolve()
        for path in paths:
            parent = (root / path).parent.resolve()
            name = Path(path).name
            if name in ("", ".", "..") or (parent != root and root not in parent.parents):
                raise GitCommandError(f"Refusing to delete {path!r} outside the repository")
            try:
                (parent / name).unlink()
                logger.info(f"Deleted untracked file {path}")
            except OSError as e:
                raise GitCommandError(f"Could not delete {path}: {e.strerror}") from e

    # ------------------------------------------------------------------ branches
    def checkout(self, branch: str) -> None:
        self._check(self.run("checkout", branch), "Checkout failed")

    def create_branch(self, name: str, start_point: Optional[str] = None, checkout: bool = False) -> None:
        if checkout:
            args = ["checkout", "-b", name]
        else:
            args = ["branch", name]
        if start_point:
            args.append(start_point)
        self._check(self.run(*args), "Failed to create branch")

    def rename_branch(self, old: str, new: str) -> None:
        self._check(self.run("branch", "-m", old, new), "Failed to rename branch")

    def delete_branch(self, name: str) -> None:
        """Force-deletes a local branch, detaching HEAD first if it is checked out."""
        if self.current_branch() == name:
            self._check(self.run("checkout", "--detach"), "Failed to detach HEAD")
        self._check(self.run("branch", "-D", name), "Failed to delete branch")
