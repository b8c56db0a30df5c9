# magi/core/Errors.py
"""Errors.py
===========
Error taxonomy of the mutation engine.

Every error the UI can recover from derives from `MagiError` and carries a
short, user-facing ``message``. The status view catches `MagiError` at the
point of detection and turns it into a popup or toast; nothing here is fatal.
Out-of-range hunk/line indices are programming defects and surface as plain
`IndexError`, never as one of these classes.
"""

from typing import Optional


class MagiError(Exception):
    """Base class for all recoverable engine errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParseError(MagiError):
    """Raised when raw diff text cannot be parsed.

    Attributes:
        line_number (Optional[int]): 1-based line of the diff text that failed.
    """

    def __init__(self, message: str, line_number: Optional[int] = None) -> None:
        if line_number is not None:
            message = f"{message} (diff line {line_number})"
        super().__init__(message)
        self.line_number = line_number


class PatchConflict(MagiError):
    """Raised when a sub-patch no longer applies to the index or working tree."""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class SpawnError(MagiError):
    """Raised when a PTY child process could not be launched."""


class BusyError(MagiError):
    """Raised when an async command is requested while another one is live."""

    def __init__(self, message: str = "A command is already in progress") -> None:
        super().__init__(message)


class GitCommandError(MagiError):
    """Raised when a synchronous git command exits non-zero."""

    def __init__(self, message: str, returncode: int = 1) -> None:
        super().__init__(message)
        self.returncode = returncode
