# src/magi/core/__init__.py
"""Public facade for magi.core: re-export the mutation engine's pure parts.

Keeps CamelCase file names (DiffModel.py, PatchAlgebra.py, ...),
but provides flat imports for convenience and stability.
"""

# Re-export classes/symbols from CamelCase modules
from .DiffModel import DiffSnapshot, FileChange, Hunk, parse_diff  # noqa: F401
from .Errors import BusyError, GitCommandError, MagiError, ParseError, PatchConflict, SpawnError  # noqa: F401
from .PatchAlgebra import PatchAlgebra  # noqa: F401
from .Selection import SelectionContext, resolve_point, resolve_range  # noqa: F401


__all__ = [
    "DiffSnapshot",
    "FileChange",
    "Hunk",
    "parse_diff",
    "MagiError",
    "ParseError",
    "PatchConflict",
    "SpawnError",
    "BusyError",
    "GitCommandError",
    "PatchAlgebra",
    "SelectionContext",
    "resolve_point",
    "resolve_range",
]
