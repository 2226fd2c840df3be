"""Runs router for listing automation runs and retrieving run details."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from ...errors import RunNotFoundError
from ...models import RunStatus
from ..dependencies import get_db_dep

router = APIRouter()


@router.get("")
async def get_runs(
    status: RunStatus | None = Query(None, description="Filter by run status"),
    source_ref: str | None = Query(None, description="Filter by requirement source"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Any = Depends(get_db_dep),
) -> dict[str, Any]:
    """List runs, newest first.

    Returns:
        Dictionary with ``runs``, ``total`` and ``has_more``.
    """
    runs = await db.list_runs(source_ref=source_ref, status=status, limit=limit, offset=offset)
    total = await db.count_runs(source_ref=source_ref, status=status)
    return {"runs": runs, "total": total, "has_more": offset + len(runs) < total}


@router.get("/{run_id}")
async def get_run_by_id_endpoint(run_id: str, db: Any = Depends(get_db_dep)) -> dict[str, Any]:
    """Get a run with its ordered steps.

    Raises:
        RunNotFoundError: Rendered as a 404 by the app's error handler.
    """
    run = await db.get_run(run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run
