# magi/ui/DrawScreen.py
"""DrawScreen.py
===============
Curses rendering of the status view.

`DrawScreen.draw(model)` paints one frame from a `UiModel`: the status rows
(with the cursor row and the visual range highlighted), a one-line status
bar at the bottom (toast, running command or key hints) and, on top, the
open popup if any. It reads the model and only writes back the scroll
offset. All widths are measured in terminal cells with wcwidth, so wide
characters in paths and diff lines never overflow a line.
"""

import curses
import logging
from typing import TYPE_CHECKING, Any

from wcwidth import wcswidth

from magi.core.DiffModel import LineKind
from magi.core.Selection import RowKind, StatusRow
from magi.utils.utils import truncate_to_width

if TYPE_CHECKING:
    from magi.ui.StatusView import UiModel


logger = logging.getLogger("magi")

COLOR_NAMES = {
    "black": 0, "red": 1, "green": 2, "yellow": 3,
    "blue": 4, "magenta": 5, "cyan": 6, "white": 7,
}

HINTS = "s stage  u unstage  x discard  V visual  c commit  P push  F pull  f fetch  q quit"


# ==================== DrawScreen Class ====================
class DrawScreen:
    """Paints `UiModel` frames onto a curses screen."""

    def __init__(self, stdscr: Any, config: dict[str, Any]) -> None:
        self.stdscr = stdscr
        self.config = config
        self.colors: dict[str, int] = {}
        self._init_colors()

    def _init_colors(self) -> None:
        """Builds attribute values for each configured color role."""
        roles = self.config.get("colors", {})
        try:
            if not curses.has_colors():
                raise curses.error("no colors")
            curses.start_color()
            try:
                curses.use_default_colors()
                background = -1
            except curses.error:
                background = curses.COLOR_BLACK
            for pair_id, (role, name) in enumerate(roles.items(), start=1):
                bright = name.startswith("bright_")
                base = COLOR_NAMES.get(name.replace("bright_", ""), 7)
                curses.init_pair(pair_id, base, background)
                self.colors[role] = curses.color_pair(pair_id) | (curses.A_BOLD if bright else 0)
        except curses.error:
            logger.debug("Terminal without colors; using plain attributes.")
            self.colors = {role: curses.A_NORMAL for role in roles}

    def get_string_width(self, text: str) -> int:
        width = wcswidth(text)
        return width if width >= 0 else len(text)

    # ------------------------------------------------------------------ frame
    def draw(self, model: "UiModel") -> None:
        try:
            height, width = self.stdscr.getmaxyx()
            self.stdscr.erase()
            if height < 3 or width < 10:
                self._safe_addstr(0, 0, "Terminal too small", curses.A_NORMAL, width)
                self.stdscr.refresh()
                return
            body_height = height - 1
            self._adjust_vertical_scroll(model, body_height)
            self._draw_rows(model, body_height, width)
            self._draw_status_bar(model, height - 1, width)
            self.stdscr.noutrefresh()
            if model.popup is not None:
                self._draw_popup(model, height, width)
            curses.doupdate()
        except curses.error:
            logger.debug("curses error while drawing", exc_info=True)

    def _adjust_vertical_scroll(self, model: "UiModel", body_height: int) -> None:
        if model.cursor < model.scroll:
            model.scroll = model.cursor
        elif model.cursor >= model.scroll + body_height:
            model.scroll = model.cursor - body_height + 1
        model.scroll = max(0, min(model.scroll, max(0, len(model.rows) - body_height)))

    def _row_attr(self, row: StatusRow) -> int:
        if row.kind is RowKind.SECTION_HEADER:
            return self.colors.get("section", 0) | curses.A_BOLD
        if row.kind in (RowKind.FILE, RowKind.HEAD):
            return self.colors.get("file", 0)
        if row.kind is RowKind.HUNK_HEADER:
            return self.colors.get("hunk", 0)
        if row.line_kind is LineKind.ADDITION:
            return self.colors.get("addition", 0)
        if row.line_kind is LineKind.DELETION:
            return self.colors.get("deletion", 0)
        return curses.A_NORMAL

    def _draw_rows(self, model: "UiModel", body_height: int, width: int) -> None:
        if model.visual_anchor is not None:
            lo, hi = sorted((model.visual_anchor, model.cursor))
        else:
            lo = hi = -1
        visible = model.rows[model.scroll:model.scroll + body_height]
        for offset, row in enumerate(visible):
            position = model.scroll + offset
            indent = "  " if row.kind in (RowKind.FILE, RowKind.HUNK_HEADER, RowKind.DIFF_LINE) else ""
            text = (indent + row.text).expandtabs(4)
            attr = self._row_attr(row)
            if lo <= position <= hi:
                attr = self.colors.get("selection", 0) | curses.A_REVERSE
            if position == model.cursor:
                attr |= curses.A_REVERSE
                text = text.ljust(width)
            self._safe_addstr(offset, 0, text, attr, width)

    def _draw_status_bar(self, model: "UiModel", y: int, width: int) -> None:
        attr = self.colors.get("status", 0) | curses.A_REVERSE
        if model.toast is not None:
            message = model.toast.message
            if model.toast.error:
                attr = self.colors.get("error", 0) | curses.A_REVERSE
        elif model.session is not None:
            message = f"{model.session.label} running..."
        elif model.visual_anchor is not None:
            message = "-- VISUAL --"
        else:
            message = HINTS
        self._safe_addstr(y, 0, " " + message.ljust(width), attr, width - 1)

    def _draw_popup(self, model: "UiModel", height: int, width: int) -> None:
        from magi.ui.StatusView import CommandPopup, ConfirmPopup, CredentialPopup, ErrorPopup, InputPopup

        popup = model.popup
        if isinstance(popup, ErrorPopup):
            title, lines, attr = popup.title, popup.message.splitlines() or [""], self.colors.get("error", 0)
            lines = lines + ["", "[Enter] close"]
        elif isinstance(popup, ConfirmPopup):
            title, lines, attr = "Confirm", [popup.message, "", "[y] yes  [n] no"], curses.A_NORMAL
        elif isinstance(popup, CredentialPopup):
            shown = "*" * len(popup.text) if popup.request.kind.masked else popup.text
            title = popup.request.kind.title
            lines, attr = [popup.request.prompt, "", "> " + shown, "", "[Enter] send  [Esc] cancel"], curses.A_NORMAL
        elif isinstance(popup, InputPopup):
            title, lines, attr = popup.title, ["> " + popup.text, "", "[Enter] ok  [Esc] cancel"], curses.A_NORMAL
        elif isinstance(popup, CommandPopup):
            title, lines, attr = popup.title, self._command_lines(popup), curses.A_NORMAL
        else:
            return

        inner_width = min(width - 4, max(30, max(self.get_string_width(line) for line in lines) + 2))
        max_lines = max(1, height - 4)
        if len(lines) > max_lines:
            lines = lines[-max_lines:]
        box_h = len(lines) + 2
        box_w = inner_width + 2
        top = max(0, (height - box_h) // 2)
        left = max(0, (width - box_w) // 2)

        win = curses.newwin(box_h, box_w, top, left)
        win.erase()
        win.box()
        win.addstr(0, 2, truncate_to_width(f" {title} ", box_w - 4), attr | curses.A_BOLD)
        for i, line in enumerate(lines, start=1):
            try:
                win.addstr(i, 1, truncate_to_width(line.expandtabs(4), inner_width))
            except curses.error:
                pass
        win.noutrefresh()

    def _command_lines(self, popup: Any) -> list[str]:
        lines = ["Arguments"]
        for member in popup.flag_type:
            mark = "*" if member in popup.chosen else " "
            lines.append(f"{mark} {member.key}  {member.description} ({member.flag})")
        lines += ["", "Actions"]
        lines += [f"  {action.key}   {action.description}" for action in popup.actions]
        lines += ["", "[-x] toggle  [Esc] close"]
        return lines

    def _safe_addstr(self, y: int, x: int, text: str, attr: int, width: int) -> None:
        try:
            self.stdscr.addstr(y, x, truncate_to_width(text, max(0, width - x)), attr)
        except curses.error:
            # Writing the bottom-right cell raises after the text is drawn.
            pass
