"""Automation step records.

Provides the StepsMixin. A step is inserted as RUNNING and moved once to
COMPLETED or FAILED; the schema rejects any later edit.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import aiosqlite

from ..models import StepStatus, StepType
from .encoding import dumps, loads
from .runs import utc_now

logger = logging.getLogger(__name__)


class StepsMixin:
    """Mixin providing audit step operations."""

    _conn: aiosqlite.Connection | None
    _write_lock: asyncio.Lock

    async def _ensure_connected(self) -> None: ...

    async def _write(self, query: str, params: tuple[Any, ...] = ()) -> int: ...

    async def start_step(
        self, step_id: str, run_id: str, step_type: StepType, input_data: Any
    ) -> None:
        """Insert a RUNNING step. Replays with the same step_id are ignored."""
        await self._write(
            """
            INSERT INTO automation_steps (id, run_id, step_type, status, input, started_at)
            VALUES (?, ?, ?, 'RUNNING', ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (step_id, run_id, StepType(step_type).value, dumps(input_data), utc_now()),
        )

    async def finish_step(
        self,
        step_id: str,
        status: StepStatus,
        output: Any | None = None,
        error: str | None = None,
    ) -> None:
        """Move a RUNNING step to a terminal status.

        Args:
            step_id: Step to finish.
            status: COMPLETED or FAILED.
            output: Step output, stored as JSON.
            error: Error text for failed steps.

        Raises:
            ValueError: If status is RUNNING, the step does not exist, or it
                already finished with a different status.
        """
        status = StepStatus(status)
        if status is StepStatus.RUNNING:
            msg = f"Cannot finish step {step_id} with status RUNNING"
            raise ValueError(msg)

        updated = await self._write(
            """
            UPDATE automation_steps
            SET status = ?, output = ?, error = ?, completed_at = ?
            WHERE id = ? AND status = 'RUNNING'
            """,
            (status.value, dumps(output), error, utc_now(), step_id),
        )
        if updated:
            return

        existing = await self.get_step(step_id)
        if existing is None:
            msg = f"Step {step_id} not found"
            raise ValueError(msg)
        if existing["status"] != status.value:
            msg = f"Step {step_id} already finished with status {existing['status']}"
            raise ValueError(msg)

    async def record_step(
        self,
        run_id: str,
        step_type: StepType,
        status: StepStatus,
        input_data: Any,
        output: Any | None = None,
        error: str | None = None,
        step_id: str | None = None,
    ) -> str:
        """Insert a step and, when status is terminal, finish it.

        Returns:
            The step identifier.
        """
        step_id = step_id or str(uuid.uuid4())
        await self.start_step(step_id, run_id, step_type, input_data)
        if StepStatus(status) is not StepStatus.RUNNING:
            await self.finish_step(step_id, status, output=output, error=error)
        return step_id

    async def get_step(self, step_id: str) -> dict[str, Any] | None:
        await self._ensure_connected()
        if not self._conn:
            return None

        async with self._conn.execute(
            "SELECT * FROM automation_steps WHERE id = ?", (step_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return _step_from_row(dict(row)) if row else None

    async def list_steps(self, run_id: str) -> list[dict[str, Any]]:
        """Steps of a run in audit order."""
        await self._ensure_connected()
        if not self._conn:
            return []

        async with self._conn.execute(
            """
            SELECT * FROM automation_steps
            WHERE run_id = ?
            ORDER BY started_at, seq
            """,
            (run_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [_step_from_row(dict(row)) for row in rows]


def _step_from_row(row: dict[str, Any]) -> dict[str, Any]:
    row["input"] = loads(row.get("input"))
    row["output"] = loads(row.get("output"))
    return row
