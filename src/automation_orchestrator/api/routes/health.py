"""Health check router."""

from fastapi import APIRouter
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str


@router.get("")
async def get_health() -> HealthResponse:
    """Liveness check; does not touch the database."""
    return HealthResponse(status="ok")
