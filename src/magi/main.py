#!/usr/bin/env python3
# magi/main.py
"""
Magi Main Entry Point
=====================

Launches the status view for the repository containing the current
directory (or the directory given as the first argument). It performs:
1) Environment Loading: reads ~/.config/magi/.env early (extra GIT_* variables, editor).
2) Configuration & Logging: loads config and initializes logging ASAP.
3) Repository Discovery: resolves the top-level directory with ``git rev-parse``.
4) Curses Wrapper: safely initializes/tears down curses to avoid terminal corruption.
5) Application Run: instantiates StatusView and starts its loop.
"""

from __future__ import annotations

import curses
import locale
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

# --- Step 1: Load Environment Variables from the User's Config Directory ---
try:
    load_dotenv(dotenv_path=Path.home() / ".config" / "magi" / ".env")
except (OSError, RuntimeError):
    # No usable HOME; git falls back to its own environment.
    pass

# --- Step 2: Immediate Logging and Configuration Setup ---
try:
    from magi.utils.logging_config import setup_logging
    from magi.utils.utils import load_config

    config: dict[str, Any] = load_config()
    setup_logging(config)
    logger = logging.getLogger("magi")
except Exception as e:
    # Logging is not ready; print to stderr and exit.
    print(f"FATAL: Could not initialize configuration or logging system: {e}", file=sys.stderr)
    import traceback
    traceback.print_exc()
    sys.exit(1)

# --- Step 3: Import the Core Application ---
try:
    from magi.integrations.GitBridge import GitBridge
    from magi.ui.StatusView import StatusView
except ImportError as e:
    logger.critical("Failed to import a critical application component: %s", e, exc_info=True)
    sys.exit(1)


def _resolve_repo_dir(argv: list[str]) -> Optional[str]:
    """Returns the repository top-level for argv[1] (or the cwd), or None."""
    raw = argv[1].strip() if len(argv) > 1 else ""
    start_dir = Path(raw).expanduser() if raw else Path.cwd()
    if not start_dir.is_dir():
        return None
    git_binary = config.get("git", {}).get("binary", "git")
    return GitBridge.find_repo_root(str(start_dir), git_binary)


# --- Step 4: Curses Application Runner ---
def main_app_runner(stdscr: curses.window, config: dict[str, Any], repo_dir: str) -> None:
    """
    Target for `curses.wrapper`. Builds the status view and runs it until quit.

    Args:
        stdscr: Curses standard screen window provided by wrapper.
        config: Application configuration dict.
        repo_dir: Top-level directory of the repository.
    """
    try:
        curses.set_escdelay(25)
    except Exception:
        os.environ.setdefault("ESCDELAY", "25")

    view = StatusView(stdscr, config, repo_dir)

    # Ctrl+Z would leave a child's PTY orphaned in the background.
    if hasattr(signal, "SIGTSTP"):
        try:
            signal.signal(signal.SIGTSTP, signal.SIG_IGN)
        except (OSError, ValueError):
            pass

    view.run()


def start() -> None:
    """Initializes locale, finds the repository and runs the curses application."""
    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error:
        logger.warning("Could not set system locale. Character rendering may be affected.")

    repo_dir = _resolve_repo_dir(sys.argv)
    if repo_dir is None:
        print("magi: not a git repository", file=sys.stderr)
        sys.exit(2)

    logger.info(f"Magi starting in {repo_dir}")
    try:
        curses.wrapper(main_app_runner, config, repo_dir)
        logger.info("Magi shut down gracefully.")
    except Exception:
        logger.critical("Unhandled exception at the top level.", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    start()
