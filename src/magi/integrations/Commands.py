# magi/integrations/Commands.py
"""Commands.py
=============
Argument vectors for the commands that run through the PTY orchestrator.

Each builder returns a ready `PtyCommand`; flags are typed enums so the UI
can list them (key, description) and the builders only ever emit known
options.
"""

import enum
from typing import Iterable, Optional

from magi.integrations.Credentials import CredentialStrategy
from magi.integrations.PtyOrchestrator import PtyCommand


class _Flag(enum.Enum):
    """Base for option enums: value is ``(key, flag, description)``."""

    @property
    def key(self) -> str:
        return self.value[0]

    @property
    def flag(self) -> str:
        return self.value[1]

    @property
    def description(self) -> str:
        return self.value[2]


class CommitFlag(_Flag):
    ALL = ("-a", "--all", "Stage all modified and deleted files")
    ALLOW_EMPTY = ("-e", "--allow-empty", "Allow empty commit")
    VERBOSE = ("-v", "--verbose", "Show diff of changes to be committed")
    NO_VERIFY = ("-n", "--no-verify", "Disable hooks")


class PushFlag(_Flag):
    FORCE_WITH_LEASE = ("-f", "--force-with-lease", "Force with lease")
    FORCE = ("-F", "--force", "Force")
    NO_VERIFY = ("-h", "--no-verify", "Disable hooks")
    DRY_RUN = ("-n", "--dry-run", "Dry run")
    SET_UPSTREAM = ("-u", "--set-upstream", "Set upstream")
    TAGS = ("-T", "--tags", "Include all tags")
    FOLLOW_TAGS = ("-t", "--follow-tags", "Include related annotated tags")


class FetchFlag(_Flag):
    PRUNE = ("-p", "--prune", "Prune deleted branches")
    TAGS = ("-t", "--tags", "Fetch all tags")
    FORCE = ("-F", "--force", "Force")


class PullFlag(_Flag):
    REBASE = ("-r", "--rebase", "Rebase local commits")
    FF_ONLY = ("-f", "--ff-only", "Fast-forward only")


def _flags(flags: Iterable[_Flag]) -> list[str]:
    # Preserve declaration order and drop duplicates so argv is stable.
    chosen = set(flags)
    if not chosen:
        return []
    members = type(next(iter(chosen)))
    return [member.flag for member in members if member in chosen]


def commit_command(cwd: str, flags: Iterable[CommitFlag] = ()) -> PtyCommand:
    """``git commit``; opens the editor, so it runs in the foreground."""
    args = ("commit", *_flags(flags))
    return PtyCommand(args, cwd, CredentialStrategy.NONE, "Commit", foreground=True)


def amend_command(cwd: str, flags: Iterable[CommitFlag] = ()) -> PtyCommand:
    args = ("commit", "--amend", *_flags(flags))
    return PtyCommand(args, cwd, CredentialStrategy.NONE, "Amend", foreground=True)


def fixup_command(cwd: str, revision: str, squash: bool = False) -> PtyCommand:
    """Creates a fixup! (or squash!) commit for ``revision`` without an editor."""
    option = "--squash" if squash else "--fixup"
    args = ("commit", f"{option}={revision}", "--no-edit")
    return PtyCommand(args, cwd, CredentialStrategy.PROMPT, "Squash" if squash else "Fixup")


def push_command(
    cwd: str,
    remote: str,
    refspec: str,
    flags: Iterable[PushFlag] = (),
) -> PtyCommand:
    args = ("push", "-v", *_flags(flags), remote, refspec)
    return PtyCommand(args, cwd, CredentialStrategy.PROMPT, f"Push to {remote}")


def delete_remote_branch_command(cwd: str, remote: str, branch: str) -> PtyCommand:
    args = ("push", "-v", "--delete", remote, branch)
    return PtyCommand(args, cwd, CredentialStrategy.PROMPT, f"Delete {remote}/{branch}")


def fetch_all_command(cwd: str, flags: Iterable[FetchFlag] = ()) -> PtyCommand:
    args = ("fetch", "-v", "--all", *_flags(flags))
    return PtyCommand(args, cwd, CredentialStrategy.PROMPT, "Fetch all remotes")


def fetch_remote_command(cwd: str, remote: str, flags: Iterable[FetchFlag] = ()) -> PtyCommand:
    args = ("fetch", "-v", remote, *_flags(flags))
    return PtyCommand(args, cwd, CredentialStrategy.PROMPT, f"Fetch {remote}")


def pull_command(
    cwd: str,
    remote: Optional[str] = None,
    branch: Optional[str] = None,
    flags: Iterable[PullFlag] = (),
) -> PtyCommand:
    """``git pull``; without ``remote`` git uses the configured upstream."""
    args: tuple[str, ...] = ("pull", "-v", *_flags(flags))
    if remote:
        args += (remote,)
        if branch:
            args += (branch,)
    label = f"Pull from {remote}" if remote else "Pull"
    return PtyCommand(args, cwd, CredentialStrategy.PROMPT, label)
