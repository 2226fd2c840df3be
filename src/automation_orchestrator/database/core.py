"""Composed AutomationDB class.

Combines the mixins into the run log used by the orchestrator, the CLI
and the API.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .connection import ConnectionMixin
from .runs import RunsMixin
from .steps import StepsMixin


class AutomationDB(ConnectionMixin, StepsMixin, RunsMixin):
    """Async SQLite run log.

    Usage:
        async with AutomationDB("automation.db") as db:
            run_id = await db.create_run("TICKET-42")
            await db.record_step(run_id, StepType.PARSE, StepStatus.COMPLETED, {...})
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        super().__init__(db_path)

    async def __aenter__(self) -> AutomationDB:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit."""
        await self.close()
