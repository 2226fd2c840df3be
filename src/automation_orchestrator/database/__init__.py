"""Async SQLite persistence of automation runs and their audit steps.

All operations are async using aiosqlite for non-blocking I/O.
"""

from __future__ import annotations

from .connection import DEFAULT_DB_PATH, SCHEMA_PATH
from .core import AutomationDB

__all__ = [
    "AutomationDB",
    "DEFAULT_DB_PATH",
    "SCHEMA_PATH",
]
