"""Launch the read-only run API under uvicorn."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

import uvicorn

from .app import DB_PATH_ENV_VAR

logger = logging.getLogger(__name__)

APP_FACTORY = "automation_orchestrator.api.app:create_app"


@contextmanager
def _exported_db_path(db_path: str | None) -> Iterator[None]:
    """Expose ``db_path`` to the app factory for the duration of the server.

    The factory runs inside uvicorn (possibly in a reloader subprocess), so
    the path travels through the environment. The previous value is restored
    on exit.
    """
    if db_path is None:
        yield
        return
    previous = os.environ.get(DB_PATH_ENV_VAR)
    os.environ[DB_PATH_ENV_VAR] = db_path
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(DB_PATH_ENV_VAR, None)
        else:
            os.environ[DB_PATH_ENV_VAR] = previous


def run_server(
    host: str = "127.0.0.1",
    port: int = 8421,
    log_level: str = "info",
    reload: bool = False,
    db_path: str | None = None,
    **kwargs: Any,
) -> None:
    """Serve the run API until interrupted.

    Args:
        host: Interface to bind.
        port: Port to bind.
        log_level: uvicorn log level.
        reload: Restart on code changes.
        db_path: Run log to serve; discovered from the project when omitted.
        **kwargs: Forwarded to ``uvicorn.run``.
    """
    logger.info("Serving run API on http://%s:%d (db=%s)", host, port, db_path or "discovered")
    with _exported_db_path(db_path):
        uvicorn.run(
            APP_FACTORY,
            factory=True,
            host=host,
            port=port,
            log_level=log_level,
            reload=reload,
            **kwargs,
        )
