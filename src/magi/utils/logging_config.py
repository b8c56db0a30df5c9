# magi/utils/logging_config.py
"""magi.utils.logging_config
===========================

Logging configuration for the Magi client.

The module defines the global logger objects and a single setup function,
`setup_logging`, which attaches handlers to the root logger based on the
``[logging]`` section of the application configuration.

Features:
    - Rotating file log (magi.log) kept OUTSIDE the repository being edited,
      in ``~/.cache/magi`` by default, so logging never shows up as an
      untracked file in the status view.
    - Optional console logging to stderr (off by default: curses owns the screen).
    - Optional separate error log (error.log) for ERROR and CRITICAL events.
    - Optional key event tracing (keytrace.log) enabled via the MAGI_KEYTRACE
      environment variable.
    - Fallback to the system temp directory when the log directory cannot be created.
    - Safe reconfiguration: clears existing handlers to avoid duplicate records.

Globals:
    logger: Main application logger ("magi").
    KEY_LOGGER: Logger for raw key-press trace events ("magi.keyevents").
"""

import logging
import logging.handlers
import os
import sys
import tempfile
from typing import Any, Optional


# ======================== Global loggers ========================
logger = logging.getLogger("magi")
KEY_LOGGER = logging.getLogger("magi.keyevents")


def _resolve_log_dir(directory: str) -> str:
    """Expands and creates the log directory, falling back to the temp dir."""
    log_dir = os.path.expanduser(directory or ".")
    if not os.path.isdir(log_dir):
        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError as e_mkdir:
            print(
                f"Error creating log directory '{log_dir}': {e_mkdir}", file=sys.stderr
            )
            log_dir = tempfile.gettempdir()
            print(f"Logging to temporary directory: '{log_dir}'", file=sys.stderr)
    return log_dir


def setup_logging(config: Optional[dict[str, Any]] = None) -> None:
    """Configures application-wide logging handlers and log levels.

    Up to four independent handlers are installed:

    1. File handler: rotating ``magi.log`` capturing everything from
       ``file_level`` (default DEBUG) upward.
    2. Console handler: optional ``stderr`` output at ``console_level``.
    3. Error-file handler: optional rotating ``error.log`` (ERROR and CRITICAL).
    4. Key-event handler: rotating ``keytrace.log`` attached to
       ``magi.keyevents`` when ``MAGI_KEYTRACE`` is ``1/true/yes``.

    Args:
        config (dict | None): Application configuration. Only the
            ``["logging"]`` sub-section is consulted; recognised keys are
            ``directory``, ``file_level``, ``console_level``,
            ``log_to_console`` and ``separate_error_log``.

    Notes:
        The function never raises; I/O or permission errors are reported to
        stderr and logging continues with a best-effort configuration.
    """
    if config is None:
        config = {}
    logging_config = config.get("logging", {})
    log_dir = _resolve_log_dir(logging_config.get("directory", "~/.cache/magi"))
    log_filename = os.path.join(log_dir, "magi.log")

    log_file_level_str = str(logging_config.get("file_level", "DEBUG")).upper()
    log_file_level = getattr(logging, log_file_level_str, logging.DEBUG)

    file_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)-8s - %(name)-15s - %(message)s (%(filename)s:%(lineno)d)"
    )
    file_handler = None
    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_filename, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(log_file_level)
    except Exception as e_fh:
        print(
            f"Error setting up file logger for '{log_filename}': {e_fh}. File logging may be impaired.",
            file=sys.stderr,
        )

    # Console Handler
    console_handler = None
    if logging_config.get("log_to_console", False):
        console_level_str = str(logging_config.get("console_level", "WARNING")).upper()
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(levelname)-8s - %(name)-12s - %(message)s")
        )
        console_handler.setLevel(getattr(logging, console_level_str, logging.WARNING))

    # Optional Separate Error Log File
    error_file_handler = None
    error_log_filename = os.path.join(log_dir, "error.log")
    if logging_config.get("separate_error_log", False):
        try:
            error_file_handler = logging.handlers.RotatingFileHandler(
                error_log_filename,
                maxBytes=1 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            error_file_handler.setFormatter(file_formatter)
            error_file_handler.setLevel(logging.ERROR)
        except Exception as e_efh:
            print(
                f"Error setting up separate error log '{error_log_filename}': {e_efh}.",
                file=sys.stderr,
            )

    root_logger = logging.getLogger()
    root_logger.handlers = []  # avoid duplicates on repeated calls

    for handler in (file_handler, console_handler, error_file_handler):
        if handler:
            root_logger.addHandler(handler)

    root_logger.setLevel(log_file_level)

    # Key Event Logger
    KEY_LOGGER.propagate = False
    KEY_LOGGER.setLevel(logging.DEBUG)
    KEY_LOGGER.handlers = []
    KEY_LOGGER.disabled = False

    if os.environ.get("MAGI_KEYTRACE", "").lower() in {"1", "true", "yes"}:
        key_trace_filename = os.path.join(log_dir, "keytrace.log")
        try:
            key_trace_handler = logging.handlers.RotatingFileHandler(
                key_trace_filename,
                maxBytes=1 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            key_trace_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
            KEY_LOGGER.addHandler(key_trace_handler)
            logging.info("Key event tracing enabled, logging to '%s'.", key_trace_filename)
        except Exception as e_keytrace:
            logging.error(
                f"Failed to set up key trace logging: {e_keytrace}", exc_info=True
            )
            KEY_LOGGER.disabled = True
    else:
        KEY_LOGGER.addHandler(logging.NullHandler())
        KEY_LOGGER.disabled = True
        logging.debug("Key event tracing is disabled.")

    logging.info(
        "Logging setup complete. Root logger level: %s.",
        logging.getLevelName(root_logger.level),
    )
    if file_handler:
        logging.info(
            f"File logging to '{log_filename}' at level: {logging.getLevelName(file_handler.level)}."
        )
    if error_file_handler:
        logging.info(f"Error logging to '{error_log_filename}' at level: ERROR.")
