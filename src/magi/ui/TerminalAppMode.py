# magi/ui/TerminalAppMode.py
from __future__ import annotations

import curses
import logging
from typing import Optional

try:
    from curses import putp, setupterm, tigetstr
except Exception:  # pragma: no cover
    tigetstr = None  # type: ignore[assignment]
    setupterm = None  # type: ignore[assignment]
    putp = None  # type: ignore[assignment]


logger = logging.getLogger("magi")


class TerminalAppMode:
    """
    Switch the terminal between the status view and a foreground command.

    - `enter(stdscr)`: alternate screen, application cursor keys, cbreak +
      noecho, keypad, hidden cursor, tick timeout on getch.
    - `suspend()`: hand the real terminal to a child process (an editor
      opened by ``git commit``) by leaving curses completely.
    - `resume()`: take the terminal back and force a full repaint.

    Always pair `enter(stdscr)` with `exit()` (try/finally).
    """

    def __init__(self, tick_ms: int = 100) -> None:
        self._entered: bool = False
        self._suspended: bool = False
        self._stdscr: Optional[curses.window] = None
        self.tick_ms = tick_ms

    @property
    def suspended(self) -> bool:
        return self._suspended

    def enter(self, stdscr: curses.window) -> None:
        self._stdscr = stdscr

        try:
            if setupterm:
                setupterm()
        except Exception as e:
            logger.debug("setupterm() failed or not required: %r", e)

        self._tputs("smcup")
        self._tputs("smkx")

        # cbreak, not raw: ^C must still interrupt a stuck tick.
        curses.cbreak()
        curses.noecho()
        stdscr.keypad(True)
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        try:
            curses.set_escdelay(35)
        except Exception:
            pass

        stdscr.timeout(self.tick_ms)
        stdscr.scrollok(False)
        stdscr.clearok(True)
        stdscr.erase()
        stdscr.refresh()

        self._entered = True
        logger.debug("TerminalAppMode: entered.")

    def exit(self) -> None:
        if not self._entered:
            return

        try:
            if self._stdscr is not None:
                self._stdscr.keypad(False)
        except Exception:
            pass
        try:
            curses.nocbreak()
            curses.echo()
            curses.curs_set(1)
        except curses.error:
            pass

        self._tputs("rmkx")
        self._tputs("rmcup")

        self._entered = False
        logger.debug("TerminalAppMode: exited.")

    def suspend(self) -> None:
        """Leaves curses so a child process can own the terminal."""
        if self._suspended:
            return
        self.exit()
        curses.endwin()
        self._suspended = True
        logger.debug("TerminalAppMode: suspended for foreground command.")

    def resume(self) -> None:
        if not self._suspended:
            return
        self._suspended = False
        if self._stdscr is None:
            return
        self._stdscr.refresh()
        self.enter(self._stdscr)
        logger.debug("TerminalAppMode: resumed.")

    # ── helpers ───────────────────────────────────────────────────────────────

    def _tputs(self, capname: str) -> None:
        try:
            if tigetstr and putp:
                s = tigetstr(capname)
                if s:
                    putp(s.decode("ascii", "ignore"))
        except Exception as e:
            logger.debug("tputs(%s) skipped: %r", capname, e)
