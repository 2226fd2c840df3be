"""FastAPI application factory with lifespan dependency management."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import RunNotFoundError
from ..project_config import find_project_root, load_project_config
from . import dependencies
from .routes import register_routes

logger = logging.getLogger(__name__)

DB_PATH_ENV_VAR = "AUTOMATION_ORCHESTRATOR_DB_PATH"


def resolve_api_db_path() -> str:
    """Database the API reads: the env var, else the discovered project DB.

    Raises:
        RuntimeError: If neither is available.
    """
    db_path = os.environ.get(DB_PATH_ENV_VAR)
    if db_path:
        return db_path

    project_root = find_project_root()
    if project_root is None:
        msg = f"No database configured. Set {DB_PATH_ENV_VAR} or run inside an initialized project."
        raise RuntimeError(msg)
    return str(load_project_config(project_root).resolve_db_path(project_root))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the run log on startup and close it on shutdown."""
    db_path = resolve_api_db_path()
    logger.info("API serving run log at %s", db_path)
    await dependencies.init_dependencies(db_path)
    try:
        yield
    finally:
        await dependencies.shutdown_dependencies()


async def _run_not_found_handler(request: Request, exc: RunNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"detail": "Run not found", "error_code": "ERR-RUN-404"},
    )


async def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Handle ValueError exceptions with a 422."""
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


async def _general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle everything else with an opaque 500."""
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def _register_error_handlers(app: FastAPI) -> None:
    """Register exception handlers on the application.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(RunNotFoundError, _run_not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _value_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _general_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        A configured FastAPI application with lifespan management.
    """
    app = FastAPI(
        title="Automation Orchestrator",
        version="1.0.0",
        docs_url="/docs",
        lifespan=lifespan,
    )

    _register_error_handlers(app)
    register_routes(app)

    return app
