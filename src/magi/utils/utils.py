# magi/utils/utils.py
"""
magi.utils.utils.py
===================

This module provides a collection of core utility functions for the Magi client.

Key functionalities include:
- Automatic User Configuration: Manages the creation and loading of user-specific
  configuration files (`config.toml`, `.env`) in `~/.config/magi`, ensuring a
  seamless first-run experience.
- Robust Configuration Loading: Implements a multi-layered strategy that loads a
  hardcoded, built-in default configuration, then recursively merges it with
  user-defined settings from `~/.config/magi/config.toml`.
- Safe Subprocess Execution: A wrapper around `subprocess.run` for safely
  executing git commands without letting a missing binary crash the UI.
- Helper Utilities: Includes deep-merging of dictionaries and display-width
  aware string clipping.

This architecture ensures the application is always runnable, even if user
configuration files are missing or corrupted, by falling back to the
embedded defaults.
"""

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List

import toml
from wcwidth import wcwidth

logger = logging.getLogger("magi")

# --- Constants ---
CONFIG_DIR_NAME = "magi"

ENV_TEMPLATE = """# Environment for git commands launched by magi.
# Uncomment and adjust as needed.
# GIT_EDITOR=vim
# GIT_SSH_COMMAND=ssh -o ServerAliveInterval=30
# MAGI_KEYTRACE=0
"""

# This dictionary is the ultimate fallback, ensuring the application can ALWAYS start.
DEFAULT_CONFIG: Dict[str, Any] = {
    "git": {
        "binary": "git",
        "pty_rows": 24,
        "pty_cols": 80,
        "env": {},
    },
    "ui": {"toast_seconds": 5, "tick_ms": 100},
    "colors": {
        "section": "yellow", "file": "bright_white", "hunk": "cyan",
        "addition": "green", "deletion": "red", "selection": "blue",
        "error": "red", "status": "bright_white",
    },
    "logging": {
        "directory": "~/.cache/magi",
        "file_level": "DEBUG",
        "console_level": "WARNING",
        "log_to_console": False,
        "separate_error_log": False,
    },
    "keybindings": {
        "move_down": ["j", "down"], "move_up": ["k", "up"],
        "page_down": ["ctrl+d", "pagedown"], "page_up": ["ctrl+u", "pageup"],
        "toggle_fold": "tab", "visual_mode": "V",
        "stage": "s", "unstage": "u", "discard": "x",
        "commit": "c", "amend": "A", "push": "P", "pull": "F", "fetch": "f",
        "new_branch": "b", "checkout": "o", "rename_branch": "R",
        "delete_branch": "D", "refresh": "g", "quit": ["q", "esc"],
    },
}


# --- Helper Functions ---

def get_config_dir() -> Path:
    """Returns the directory holding the user's `config.toml` and `.env`."""
    return Path.home() / ".config" / CONFIG_DIR_NAME


def ensure_user_config_exists() -> None:
    """Checks for user config files in `~/.config/magi` and creates them if missing."""
    try:
        config_dir = get_config_dir()
        user_config_path = config_dir / "config.toml"
        user_env_path = config_dir / ".env"

        config_dir.mkdir(parents=True, exist_ok=True)

        if not user_config_path.exists():
            user_config_path.write_text(
                "# User overrides for magi. See DEFAULT_CONFIG for all keys.\n",
                encoding="utf-8",
            )
            logger.info(f"Created user config template at: {user_config_path}")

        if not user_env_path.exists():
            user_env_path.write_text(ENV_TEMPLATE, encoding="utf-8")
            logger.info(f"Created user .env template at: {user_env_path}")

    except Exception as e:
        logger.critical(f"Could not create user configuration files: {e}", exc_info=True)


def load_config() -> Dict[str, Any]:
    """
    Loads and merges configurations, ensuring the application can always run.
    """
    final_config = deep_merge({}, DEFAULT_CONFIG)
    logger.debug("Loaded embedded default configuration.")

    ensure_user_config_exists()

    user_config_path = get_config_dir() / "config.toml"
    if user_config_path.is_file():
        try:
            user_config = toml.load(user_config_path)
            final_config = deep_merge(final_config, user_config)
            logger.info(f"Successfully loaded and merged user config from {user_config_path}")
        except Exception as e:
            logger.error(f"Could not parse user config '{user_config_path}': {e}. Using defaults.")

    return final_config


def safe_run(cmd: List[str], raw: bool = False, **kwargs: Any) -> subprocess.CompletedProcess:
    """
    Executes a command safely, capturing output and handling common exceptions.

    With ``raw=True`` stdin/stdout/stderr are bytes and no newline translation
    happens; diffs and patches need this to survive CRLF content unchanged.
    """
    empty: Any = b"" if raw else ""
    try:
        if raw:
            return subprocess.run(cmd, capture_output=True, check=False, **kwargs)
        return subprocess.run(
            cmd, capture_output=True, text=True, check=False,
            encoding="utf-8", errors="replace", **kwargs,
        )
    except FileNotFoundError as e:
        logger.error(f"Command not found: {cmd[0]!r}", exc_info=True)
        return subprocess.CompletedProcess(cmd, 127, stdout=empty, stderr=_as_output(str(e), raw))
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, -9, stdout=e.stdout or empty, stderr=e.stderr or empty)
    except Exception as e:
        logger.exception(f"An unexpected error occurred while running command: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, -1, stdout=empty, stderr=_as_output(str(e), raw))


def _as_output(text: str, raw: bool) -> Any:
    return text.encode("utf-8", "replace") if raw else text


def deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Recursively merges the `override` dictionary into the `base` dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def truncate_to_width(s: str, max_width: int) -> str:
    """Return `s` clipped to visual width `max_width`.

    Wide-Unicode characters (e.g. CJK) are accounted for with
    :pyfunc:`wcwidth.wcwidth`; non-printable characters count as one cell.
    """
    result: list[str] = []
    consumed = 0

    for ch in s:
        w = wcwidth(ch)
        if w < 0:
            w = 1
        if consumed + w > max_width:
            break
        result.append(ch)
        consumed += w

    return "".join(result)
