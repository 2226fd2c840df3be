"""Automation run records.

Provides the RunsMixin: run creation, one-shot completion and queries.
A run leaves RUNNING exactly once; replaying the same completion is a
no-op so that callers may retry writes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from ..errors import RunNotFoundError
from ..models import RunStatus
from .encoding import dumps, loads

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Timestamp format shared by runs and steps; sorts lexicographically."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _run_from_row(row: dict[str, Any]) -> dict[str, Any]:
    run = dict(row)
    run["result_metadata"] = loads(run.get("result_metadata")) or {}
    return run


class RunsMixin:
    """Mixin providing automation run operations."""

    _conn: aiosqlite.Connection | None
    _write_lock: asyncio.Lock

    async def _ensure_connected(self) -> None: ...

    async def _write(self, query: str, params: tuple[Any, ...] = ()) -> int: ...

    async def list_steps(self, run_id: str) -> list[dict[str, Any]]: ...

    async def create_run(self, source_ref: str, run_id: str | None = None) -> str:
        """Create a run in RUNNING state.

        Args:
            source_ref: Reference of the requirement source the run works on.
            run_id: Caller-chosen identifier. Replaying a create with the same
                id leaves the existing row untouched.

        Returns:
            The run identifier.
        """
        run_id = run_id or str(uuid.uuid4())
        await self._write(
            """
            INSERT INTO automation_runs (id, source_ref, status, started_at)
            VALUES (?, ?, 'RUNNING', ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (run_id, source_ref, utc_now()),
        )
        logger.debug("Created run %s for %s", run_id, source_ref)
        return run_id

    async def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        metadata: dict[str, Any],
        error: str | None = None,
    ) -> None:
        """Move a run to its terminal status.

        Args:
            run_id: Run to complete.
            status: Terminal status (SUCCESS, PARTIAL or FAILED).
            metadata: Result metadata stored as JSON.
            error: Summary of the errors, if any.

        Raises:
            ValueError: If status is not terminal, or the run already
                completed with a different status.
            RunNotFoundError: If the run does not exist.
        """
        status = RunStatus(status)
        if not status.is_terminal:
            msg = f"Cannot complete run {run_id} with non-terminal status {status.value}"
            raise ValueError(msg)

        updated = await self._write(
            """
            UPDATE automation_runs
            SET status = ?, completed_at = ?, error = ?, result_metadata = ?
            WHERE id = ? AND status = 'RUNNING'
            """,
            (status.value, utc_now(), error, dumps(metadata or {}), run_id),
        )
        if updated:
            logger.info("Run %s completed with status %s", run_id, status.value)
            return

        existing = await self._get_run_row(run_id)
        if existing is None:
            raise RunNotFoundError(run_id)
        if existing["status"] != status.value:
            msg = f"Run {run_id} already completed with status {existing['status']}"
            raise ValueError(msg)

    async def _get_run_row(self, run_id: str) -> dict[str, Any] | None:
        await self._ensure_connected()
        if not self._conn:
            return None

        async with self._conn.execute(
            "SELECT * FROM automation_runs WHERE id = ?", (run_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def get_run(self, run_id: str) -> dict[str, Any] | None:
        """Get a run with its ordered steps.

        Returns:
            Run dict with decoded ``result_metadata`` and a ``steps`` list,
            or None if no such run exists.
        """
        row = await self._get_run_row(run_id)
        if row is None:
            return None
        run = _run_from_row(row)
        run["steps"] = await self.list_steps(run_id)
        return run

    async def list_runs(
        self,
        source_ref: str | None = None,
        status: RunStatus | str | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List runs, newest first, without their steps."""
        await self._ensure_connected()
        if not self._conn:
            return []

        where, params = self._run_filters(source_ref, status)
        async with self._conn.execute(
            f"SELECT * FROM automation_runs{where} "
            "ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ) as cursor:
            rows = await cursor.fetchall()
            return [_run_from_row(dict(row)) for row in rows]

    async def count_runs(
        self,
        source_ref: str | None = None,
        status: RunStatus | str | None = None,
    ) -> int:
        """Count runs matching the same filters as list_runs."""
        await self._ensure_connected()
        if not self._conn:
            return 0

        where, params = self._run_filters(source_ref, status)
        async with self._conn.execute(
            f"SELECT COUNT(*) AS total FROM automation_runs{where}", params
        ) as cursor:
            row = await cursor.fetchone()
            return int(row["total"]) if row else 0

    @staticmethod
    def _run_filters(
        source_ref: str | None, status: RunStatus | str | None
    ) -> tuple[str, tuple[Any, ...]]:
        clauses: list[str] = []
        params: list[Any] = []
        if source_ref is not None:
            clauses.append("source_ref = ?")
            params.append(source_ref)
        if status is not None:
            clauses.append("status = ?")
            params.append(RunStatus(status).value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, tuple(params)
