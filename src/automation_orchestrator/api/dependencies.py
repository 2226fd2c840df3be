"""Dependency initialization and management for API singletons.

This module manages the module-level AutomationDB singleton during
application lifespan (startup/shutdown).
"""

from __future__ import annotations

from ..database import AutomationDB

# Module-level singleton
_db: AutomationDB | None = None


def get_db_dep() -> AutomationDB:
    """Get the AutomationDB singleton.

    Returns:
        The initialized AutomationDB instance.

    Raises:
        RuntimeError: If dependencies are not initialized.
    """
    if _db is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies() first.")
    return _db


async def init_dependencies(db_path: str) -> None:
    """Initialize the AutomationDB singleton.

    Idempotent: calling it again reuses the existing connection.

    Args:
        db_path: Path to the SQLite database file.

    Raises:
        ValueError: If db_path is empty.
        OSError: If the database file cannot be opened.
    """
    global _db

    if _db is not None:
        return

    if not db_path:
        raise ValueError("db_path cannot be empty")

    db = AutomationDB(db_path=db_path)
    try:
        await db.connect()
    except Exception as e:
        await db.close()
        if "unable to open database" in str(e).lower():
            raise OSError(f"Unable to open database at {db_path}") from e
        raise
    _db = db


async def shutdown_dependencies() -> None:
    """Close and reset the singleton. Safe to call multiple times."""
    global _db

    if _db is not None:
        await _db.close()
        _db = None
