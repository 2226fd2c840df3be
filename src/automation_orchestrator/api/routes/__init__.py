"""Route registration for FastAPI app."""

from __future__ import annotations

from fastapi import FastAPI

from . import health, runs


def register_routes(app: FastAPI) -> None:
    """Register all route modules to the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(runs.router, prefix="/runs", tags=["runs"])
