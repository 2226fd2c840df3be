"""Database connection management and schema initialization.

Provides the base ConnectionMixin with connection lifecycle, schema setup,
and the locked write helper every mixin uses.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from ..errors import RunLogWriteError

logger = logging.getLogger(__name__)

# Path to schema file shipped inside the package
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

# Default database path
DEFAULT_DB_PATH = Path.cwd() / "automation.db"

_TRANSIENT_SQLITE_MARKERS = ("locked", "busy")


class ConnectionMixin:
    """Base mixin providing database connection management.

    Manages the aiosqlite connection lifecycle, schema initialization,
    and serialized writes.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. Use ":memory:" for testing.
                     Defaults to automation.db in the current working directory.
        """
        if db_path is None:
            self.db_path: str | Path = DEFAULT_DB_PATH
        elif isinstance(db_path, str):
            self.db_path = Path(db_path) if db_path != ":memory:" else db_path
        else:
            self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._initialized = False
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        db_path = str(self.db_path) if isinstance(self.db_path, Path) else self.db_path
        if db_path != ":memory:":
            resolved_path = Path(db_path).resolve()
            resolved_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info("Database: %s (exists: %s)", resolved_path, resolved_path.exists())
        self._conn = await aiosqlite.connect(db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._initialize_schema()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            self._initialized = False

    async def _ensure_connected(self) -> None:
        """Ensure database is connected."""
        if self._conn is None:
            await self.connect()

    async def _initialize_schema(self) -> None:
        """Initialize database schema from SQL file.

        Raises:
            RuntimeError: If the schema cannot be applied.
        """
        if not self._conn:
            msg = "Database not connected"
            raise RuntimeError(msg)

        if self._initialized:
            return

        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
        async with self._write_lock:
            try:
                await self._conn.executescript(schema_sql)
                await self._conn.execute("PRAGMA foreign_keys = ON")
                await self._conn.commit()
                self._initialized = True
                logger.info("Database schema initialized")
            except sqlite3.Error as e:
                msg = (
                    f"Schema initialization failed: {e}\n"
                    f"To fix: Delete {self.db_path} and run again."
                )
                raise RuntimeError(msg) from e

    async def _write(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute one write statement atomically and return affected rows.

        Raises:
            RunLogWriteError: If SQLite reports the database as locked or busy.
        """
        await self._ensure_connected()
        assert self._conn is not None

        async with self._write_lock:
            try:
                cursor = await self._conn.execute(query, params)
                await self._conn.commit()
            except sqlite3.Error as e:
                await self._conn.rollback()
                transient = isinstance(e, sqlite3.OperationalError) and any(
                    marker in str(e).lower() for marker in _TRANSIENT_SQLITE_MARKERS
                )
                if transient:
                    raise RunLogWriteError(f"Run log write failed: {e}") from e
                raise
            return cursor.rowcount
