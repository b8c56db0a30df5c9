# magi/ui/StatusView.py
"""StatusView.py
===============
The interactive status buffer: one owned `UiModel`, one cooperative loop.

Every tick of `StatusView.run`:

1. reads at most one key (``getch`` with the configured tick timeout),
2. dispatches it to the open popup, or to an action,
3. polls the live `PtySession` for a credential request and for its result,
   both without blocking,
4. repaints through `DrawScreen`.

Stage / unstage / discard and branch operations run inline through
`PatchAlgebra` and `GitBridge`; commit, push, pull and fetch are handed to
the `PtyOrchestrator`. Every `MagiError` is caught where it is raised and
shown as an error popup; nothing here ends the program except ``quit``.
"""

import curses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from magi.core.DiffModel import DiffSnapshot, Section
from magi.core.Errors import BusyError, MagiError
from magi.core.PatchAlgebra import PatchAlgebra
from magi.core.Selection import (
    FilesSelection,
    HunkSelection,
    HunksSelection,
    LinesSelection,
    NoSelection,
    RowKind,
    Selection,
    SelectionContext,
    StatusRow,
    build_status_rows,
    cursor_anchor,
    resolve_point,
    resolve_range,
    restore_cursor,
)
from magi.integrations import Commands
from magi.integrations.Credentials import CredentialInput, CredentialRequest
from magi.integrations.GitBridge import GitBridge
from magi.integrations.PtyOrchestrator import CommandResult, PtyCommand, PtyOrchestrator, PtySession
from magi.ui.DrawScreen import DrawScreen
from magi.ui.KeyBinder import BACKSPACE_KEYS, ENTER_KEYS, ESC, KeyBinder
from magi.ui.TerminalAppMode import TerminalAppMode


logger = logging.getLogger("magi")


# ==================== UI model ====================

@dataclass
class ErrorPopup:
    title: str
    message: str


@dataclass
class ConfirmPopup:
    message: str
    on_confirm: Callable[[], None]


@dataclass
class CredentialPopup:
    request: CredentialRequest
    text: str = field(default="", repr=False)


@dataclass
class InputPopup:
    title: str
    on_submit: Callable[[str], None]
    text: str = ""


@dataclass
class MenuAction:
    key: str
    description: str
    run: Callable[[tuple], None]


@dataclass
class CommandPopup:
    """Flag toggles plus actions: ``-`` and a letter toggles a flag, a letter runs an action."""

    title: str
    flag_type: type
    actions: tuple[MenuAction, ...]
    chosen: set = field(default_factory=set)
    flag_pending: bool = False

    def chosen_flags(self) -> tuple:
        return tuple(member for member in self.flag_type if member in self.chosen)


Popup = Union[ErrorPopup, ConfirmPopup, CredentialPopup, InputPopup, CommandPopup]


@dataclass
class Toast:
    message: str
    expires_at: float
    error: bool = False


@dataclass
class UiModel:
    """Everything the status view knows; owned by `StatusView` alone."""

    snapshot: DiffSnapshot = field(default_factory=DiffSnapshot)
    rows: list[StatusRow] = field(default_factory=list)
    cursor: int = 0
    scroll: int = 0
    visual_anchor: Optional[int] = None
    collapsed: set[tuple[Section, str]] = field(default_factory=set)
    popup: Optional[Popup] = None
    toast: Optional[Toast] = None
    session: Optional[PtySession] = None
    running: bool = True


# ==================== StatusView Class ====================
class StatusView:
    """Main application object for one repository.

    Args:
        stdscr: Curses standard screen (may be a mock in tests).
        config (dict): Merged application configuration.
        repo_dir (str): Top-level directory of the repository.
        bridge (GitBridge | None): Synchronous executor; built from config if None.
        orchestrator (PtyOrchestrator | None): PTY runner; built from config if None.
    """

    def __init__(
        self,
        stdscr: Any,
        config: dict[str, Any],
        repo_dir: str,
        bridge: Optional[GitBridge] = None,
        orchestrator: Optional[PtyOrchestrator] = None,
    ) -> None:
        self.stdscr = stdscr
        self.config = config
        self.repo_dir = repo_dir
        self.bridge = bridge or GitBridge(repo_dir, config)
        self.orchestrator = orchestrator or PtyOrchestrator(config)
        ui_config = config.get("ui", {})
        self.toast_seconds = float(ui_config.get("toast_seconds", 5))
        self.tick_ms = int(ui_config.get("tick_ms", 100))
        self.model = UiModel()
        self.keybinder = KeyBinder(config, stdscr)
        self.drawer = DrawScreen(stdscr, config)
        self.terminal_mode = TerminalAppMode(self.tick_ms)
        self.actions: dict[str, Callable[[], None]] = {
            "move_down": lambda: self.move_cursor(1),
            "move_up": lambda: self.move_cursor(-1),
            "page_down": lambda: self.move_cursor(self._page()),
            "page_up": lambda: self.move_cursor(-self._page()),
            "toggle_fold": self.toggle_fold,
            "visual_mode": self.toggle_visual,
            "stage": self.stage_selected,
            "unstage": self.unstage_selected,
            "discard": self.discard_selected,
            "commit": self.open_commit_menu,
            "amend": self.amend,
            "push": self.open_push_menu,
            "pull": self.open_pull_menu,
            "fetch": self.open_fetch_menu,
            "new_branch": self.prompt_new_branch,
            "checkout": self.prompt_checkout,
            "rename_branch": self.prompt_rename_branch,
            "delete_branch": self.prompt_delete_branch,
            "refresh": self.refresh,
            "quit": self.quit,
        }

    # ------------------------------------------------------------------ loop
    def run(self) -> None:
        logger.info(f"Status view started for {self.repo_dir}")
        self.terminal_mode.enter(self.stdscr)
        try:
            self.refresh()
            while self.model.running:
                try:
                    self.tick()
                except KeyboardInterrupt:
                    logger.info("Interrupted; quitting.")
                    break
        finally:
            self.orchestrator.shutdown()
            self.terminal_mode.exit()
            logger.info("Status view finished.")

    def tick(self) -> None:
        """One cooperative iteration: key, polls, paint."""
        if self.terminal_mode.suspended:
            # A foreground command owns the terminal; only watch for its result.
            time.sleep(self.tick_ms / 1000)
        else:
            key = self.keybinder.get_key_input()
            if key != curses.ERR and key != -1:
                self.handle_key(key)
        self.poll_session()
        self._expire_toast()
        if not self.terminal_mode.suspended:
            self.drawer.draw(self.model)

    def handle_key(self, key: int | str) -> None:
        if key == curses.KEY_RESIZE:
            return
        if self.model.popup is not None:
            self._handle_popup_key(key)
            return
        action = self.keybinder.lookup(key)
        if action is None:
            return
        handler = self.actions.get(action)
        if handler is None:
            logger.debug(f"No handler for action {action!r}")
            return
        handler()

    def poll_session(self) -> None:
        session = self.model.session
        if session is None:
            return
        # A request waits in its queue while another popup is open.
        if self.model.popup is None:
            request = session.poll_credential_request()
            if request is not None:
                logger.debug(f"{session.label}: {request.kind.title} requested")
                self.model.popup = CredentialPopup(request)
        result = session.poll_result()
        if result is not None:
            self._on_result(session, result)

    def _on_result(self, session: PtySession, result: CommandResult) -> None:
        self.model.session = None
        if session.command.foreground:
            self.terminal_mode.resume()
        if isinstance(self.model.popup, CredentialPopup):
            self.model.popup = None
        if result.success:
            self.show_toast(f"{session.label}: {result.summary}")
        else:
            self.model.popup = ErrorPopup(f"{session.label} failed", result.message)
        self.refresh()

    # ------------------------------------------------------------------ state helpers
    def show_toast(self, message: str, error: bool = False) -> None:
        self.model.toast = Toast(message, time.monotonic() + self.toast_seconds, error)

    def show_error(self, title: str, error: MagiError) -> None:
        logger.warning(f"{title}: {error.message}")
        self.model.popup = ErrorPopup(title, error.message)

    def _expire_toast(self) -> None:
        toast = self.model.toast
        if toast is not None and time.monotonic() >= toast.expires_at:
            self.model.toast = None

    def _page(self) -> int:
        height, _ = self.stdscr.getmaxyx()
        return max(1, height - 2)

    def refresh(self) -> None:
        """Re-reads the repository and rebuilds rows, keeping the cursor in place.

        On failure the previous snapshot and rows are kept.
        """
        model = self.model
        try:
            snapshot = self.bridge.snapshot()
        except MagiError as e:
            self.show_error("Refresh failed", e)
            return
        anchor = cursor_anchor(model.rows, model.cursor)
        model.snapshot = snapshot
        still_present = {
            (section, change.path)
            for section in (Section.UNSTAGED, Section.STAGED)
            for change in snapshot.files(section)
        }
        model.collapsed &= still_present
        model.rows = build_status_rows(snapshot, model.collapsed)
        model.cursor = restore_cursor(model.rows, anchor, model.cursor)
        model.visual_anchor = None

    def move_cursor(self, delta: int) -> None:
        if not self.model.rows:
            return
        self.model.cursor = max(0, min(self.model.cursor + delta, len(self.model.rows) - 1))

    def toggle_fold(self) -> None:
        model = self.model
        if not model.rows:
            return
        row = model.rows[model.cursor]
        if row.path is None or row.section not in (Section.UNSTAGED, Section.STAGED):
            return
        key = (row.section, row.path)
        if key in model.collapsed:
            model.collapsed.discard(key)
        else:
            model.collapsed.add(key)
        model.rows = build_status_rows(model.snapshot, model.collapsed)
        for position, candidate in enumerate(model.rows):
            if candidate.kind is RowKind.FILE and (candidate.section, candidate.path) == key:
                model.cursor = position
                break
        model.visual_anchor = None

    def toggle_visual(self) -> None:
        model = self.model
        model.visual_anchor = None if model.visual_anchor is not None else model.cursor

    def quit(self) -> None:
        if self.model.visual_anchor is not None:
            self.model.visual_anchor = None
            return
        self.model.running = False

    # ------------------------------------------------------------------ selection actions
    def resolve(self, context: SelectionContext) -> Selection:
        model = self.model
        if model.visual_anchor is not None:
            return resolve_range(model.rows, model.visual_anchor, model.cursor, context)
        return resolve_point(model.rows, model.cursor, context)

    def stage_selected(self) -> None:
        self._mutate(SelectionContext.STAGEABLE, "Stage failed", lambda algebra, sel: algebra.stage(sel))

    def unstage_selected(self) -> None:
        self._mutate(SelectionContext.UNSTAGEABLE, "Unstage failed", lambda algebra, sel: algebra.unstage(sel))

    def discard_selected(self) -> None:
        selection = self.resolve(SelectionContext.DISCARDABLE)
        if isinstance(selection, NoSelection):
            return
        snapshot = self.model.snapshot

        def confirmed() -> None:
            if self.model.snapshot is not snapshot:
                self.show_toast("Status changed; select again", error=True)
                return
            self._apply(selection, snapshot, "Discard failed", lambda algebra, sel: algebra.discard(sel))

        self.model.popup = ConfirmPopup(describe_discard(selection), confirmed)

    def _mutate(self, context: SelectionContext, title: str, op: Callable[[PatchAlgebra, Selection], str]) -> None:
        selection = self.resolve(context)
        if isinstance(selection, NoSelection):
            return
        self._apply(selection, self.model.snapshot, title, op)

    def _apply(
        self,
        selection: Selection,
        snapshot: DiffSnapshot,
        title: str,
        op: Callable[[PatchAlgebra, Selection], str],
    ) -> None:
        try:
            message = op(PatchAlgebra(self.bridge, snapshot), selection)
        except MagiError as e:
            self.show_error(title, e)
        else:
            logger.info(message)
            self.show_toast(message)
        # Never reuse a snapshot after touching the index.
        self.refresh()

    # ------------------------------------------------------------------ async commands
    def start_command(self, command: PtyCommand) -> None:
        """Spawns ``command`` unless another one is still running."""
        if self.model.session is not None or self.orchestrator.active is not None:
            self.show_error("Cannot start " + command.display_label, BusyError())
            return
        if command.foreground:
            self.terminal_mode.suspend()
        try:
            session = self.orchestrator.spawn(command)
        except MagiError as e:
            if command.foreground:
                self.terminal_mode.resume()
            self.show_error("Cannot start " + command.display_label, e)
            return
        self.model.session = session
        self.show_toast(f"{session.label}...")

    def open_commit_menu(self) -> None:
        self.model.popup = CommandPopup(
            "Commit",
            Commands.CommitFlag,
            (
                MenuAction("c", "Commit", self.commit),
                MenuAction("a", "Amend", self.amend),
                MenuAction("f", "Fixup", lambda flags: self.prompt_fixup(squash=False)),
                MenuAction("s", "Squash", lambda flags: self.prompt_fixup(squash=True)),
            ),
        )

    def commit(self, flags: tuple = ()) -> None:
        skip_check = {Commands.CommitFlag.ALL, Commands.CommitFlag.ALLOW_EMPTY} & set(flags)
        if not skip_check and not self.bridge.has_staged_changes():
            self.show_toast("Nothing staged to commit")
            return
        self.start_command(Commands.commit_command(self.repo_dir, flags))

    def amend(self, flags: tuple = ()) -> None:
        self.start_command(Commands.amend_command(self.repo_dir, flags))

    def prompt_fixup(self, squash: bool) -> None:
        def submit(revision: str) -> None:
            self.start_command(Commands.fixup_command(self.repo_dir, revision, squash=squash))

        self.model.popup = InputPopup("Squash into commit" if squash else "Fixup commit", submit)

    def open_push_menu(self) -> None:
        self.model.popup = CommandPopup(
            "Push",
            Commands.PushFlag,
            (
                MenuAction("p", "Push to upstream", self.push),
                MenuAction("e", "Push elsewhere", self.prompt_push_elsewhere),
            ),
        )

    def _pushable_branch(self) -> Optional[str]:
        branch = self.bridge.current_branch()
        if not branch or branch.startswith("(detached"):
            self.show_toast("Not on a branch", error=True)
            return None
        return branch

    def push(self, flags: tuple = ()) -> None:
        branch = self._pushable_branch()
        if branch is None:
            return
        upstream = self.bridge.upstream()
        if upstream is not None:
            remote, remote_branch = upstream
            refspec = branch if remote_branch == branch else f"{branch}:{remote_branch}"
            self.start_command(Commands.push_command(self.repo_dir, remote, refspec, flags))
            return
        remotes = self.bridge.remotes()
        if not remotes:
            self.show_toast("No remote configured", error=True)
            return
        remote = "origin" if "origin" in remotes else remotes[0]
        self.start_command(
            Commands.push_command(self.repo_dir, remote, branch, (*flags, Commands.PushFlag.SET_UPSTREAM))
        )

    def prompt_push_elsewhere(self, flags: tuple = ()) -> None:
        branch = self._pushable_branch()
        if branch is None:
            return

        def submit(remote: str) -> None:
            self.start_command(Commands.push_command(self.repo_dir, remote, branch, flags))

        self.model.popup = InputPopup(f"Push {branch} to remote", submit)

    def open_pull_menu(self) -> None:
        self.model.popup = CommandPopup(
            "Pull",
            Commands.PullFlag,
            (
                MenuAction("p", "Pull from upstream", self.pull),
                MenuAction("e", "Pull elsewhere", self.prompt_pull_elsewhere),
            ),
        )

    def pull(self, flags: tuple = ()) -> None:
        self.start_command(Commands.pull_command(self.repo_dir, flags=flags))

    def prompt_pull_elsewhere(self, flags: tuple = ()) -> None:
        def submit(target: str) -> None:
            # "origin main" or "origin/main"
            remote, _, branch = target.replace("/", " ", 1).partition(" ")
            self.start_command(Commands.pull_command(self.repo_dir, remote, branch.strip() or None, flags))

        self.model.popup = InputPopup("Pull from remote [branch]", submit)

    def open_fetch_menu(self) -> None:
        self.model.popup = CommandPopup(
            "Fetch",
            Commands.FetchFlag,
            (
                MenuAction("a", "Fetch all remotes", self.fetch_all),
                MenuAction("e", "Fetch elsewhere", self.prompt_fetch_elsewhere),
            ),
        )

    def fetch_all(self, flags: tuple = ()) -> None:
        self.start_command(Commands.fetch_all_command(self.repo_dir, flags))

    def prompt_fetch_elsewhere(self, flags: tuple = ()) -> None:
        def submit(remote: str) -> None:
            self.start_command(Commands.fetch_remote_command(self.repo_dir, remote, flags))

        self.model.popup = InputPopup("Fetch from remote", submit)

    # ------------------------------------------------------------------ branches
    def _branch_op(self, title: str, op: Callable[[], None], done: str) -> None:
        try:
            op()
        except MagiError as e:
            self.show_error(title, e)
        else:
            self.show_toast(done)
        self.refresh()

    def prompt_new_branch(self) -> None:
        def submit(name: str) -> None:
            self._branch_op(
                "Create branch failed",
                lambda: self.bridge.create_branch(name, checkout=True),
                f"Switched to new branch {name}",
            )

        self.model.popup = InputPopup("Create and checkout branch", submit)

    def prompt_checkout(self) -> None:
        def submit(name: str) -> None:
            self._branch_op("Checkout failed", lambda: self.bridge.checkout(name), f"Checked out {name}")

        self.model.popup = InputPopup("Checkout branch", submit)

    def prompt_rename_branch(self) -> None:
        current = self.bridge.current_branch()
        if not current or current.startswith("(detached"):
            self.show_toast("Not on a branch", error=True)
            return

        def submit(name: str) -> None:
            self._branch_op(
                "Rename branch failed",
                lambda: self.bridge.rename_branch(current, name),
                f"Renamed {current} to {name}",
            )

        self.model.popup = InputPopup(f"Rename {current} to", submit)

    def prompt_delete_branch(self) -> None:
        def submit(name: str) -> None:
            remote, _, branch = name.partition("/")
            if branch and remote in self.bridge.remotes():
                self.start_command(Commands.delete_remote_branch_command(self.repo_dir, remote, branch))
                return
            self._branch_op("Delete branch failed", lambda: self.bridge.delete_branch(name), f"Deleted {name}")

        self.model.popup = InputPopup("Delete branch", submit)

    # ------------------------------------------------------------------ popups
    def _handle_popup_key(self, key: int | str) -> None:
        popup = self.model.popup
        if isinstance(popup, ErrorPopup):
            if key in (ESC, ord("q")) or key in ENTER_KEYS:
                self.model.popup = None
        elif isinstance(popup, ConfirmPopup):
            if key in (ord("y"), ord("Y")):
                self.model.popup = None
                popup.on_confirm()
            elif key in (ESC, ord("n"), ord("N"), ord("q")):
                self.model.popup = None
        elif isinstance(popup, CredentialPopup):
            self._credential_key(popup, key)
        elif isinstance(popup, CommandPopup):
            self._command_key(popup, key)
        elif isinstance(popup, InputPopup):
            if key == ESC:
                self.model.popup = None
            elif key in ENTER_KEYS or key == curses.KEY_ENTER:
                self.model.popup = None
                if popup.text.strip():
                    popup.on_submit(popup.text.strip())
            else:
                popup.text = edit_text(popup.text, key)

    def _command_key(self, popup: CommandPopup, key: int | str) -> None:
        if key in (ESC, ord("q")):
            self.model.popup = None
            return
        if not isinstance(key, int) or not 32 < key < 127:
            return
        ch = chr(key)
        if popup.flag_pending:
            popup.flag_pending = False
            for member in popup.flag_type:
                if member.key == "-" + ch:
                    popup.chosen ^= {member}
            return
        if ch == "-":
            popup.flag_pending = True
            return
        for action in popup.actions:
            if action.key == ch:
                self.model.popup = None
                action.run(popup.chosen_flags())
                return

    def _credential_key(self, popup: CredentialPopup, key: int | str) -> None:
        session = self.model.session
        if key == ESC:
            self.model.popup = None
            if session is not None:
                # Closing the channel terminates the child; no error is shown.
                session.cancel()
                self.model.session = None
            self.show_toast(f"{popup.request.kind.title} entry cancelled")
        elif key in ENTER_KEYS or key == curses.KEY_ENTER:
            self.model.popup = None
            if session is not None:
                session.send_credential(CredentialInput(popup.text))
            popup.text = ""
        else:
            popup.text = edit_text(popup.text, key)


def edit_text(text: str, key: int | str) -> str:
    """Applies a printable key or backspace to a single-line input."""
    if key in BACKSPACE_KEYS or key == curses.KEY_BACKSPACE:
        return text[:-1]
    if isinstance(key, int) and 32 <= key < 0x110000 and chr(key).isprintable():
        return text + chr(key)
    return text


def describe_discard(selection: Selection) -> str:
    """Confirmation question for discarding ``selection``."""
    if isinstance(selection, FilesSelection):
        if len(selection.paths) == 1:
            return f"Discard changes in {selection.paths[0]}?"
        return f"Discard changes in {len(selection.paths)} files?"
    if isinstance(selection, HunkSelection):
        return f"Discard hunk in {selection.path}?"
    if isinstance(selection, HunksSelection):
        return f"Discard {len(selection.hunk_indices)} hunks in {selection.path}?"
    if isinstance(selection, LinesSelection):
        count = len(selection.line_indices)
        noun = "line" if count == 1 else "lines"
        return f"Discard {count} {noun} in {selection.path}?"
    return "Discard?"
