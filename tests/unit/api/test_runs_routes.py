"""Tests for the runs router and the app's error handlers.

Tests the following endpoints:
- GET /runs - List runs with optional status/source filters
- GET /runs/{id} - Get a run with its ordered steps
- GET /health - Liveness
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from automation_orchestrator.api.app import create_app
from automation_orchestrator.api.dependencies import get_db_dep


def _run(run_id: str, status: str = "SUCCESS") -> dict[str, Any]:
    return {
        "id": run_id,
        "source_ref": "TICKET-42",
        "status": status,
        "started_at": "2026-01-05T10:00:00.000000+00:00",
        "completed_at": "2026-01-05T10:01:00.000000+00:00",
        "error": None,
        "result_metadata": {"errors": [], "warnings": []},
    }


@pytest.fixture
def db() -> MagicMock:
    mock_db = MagicMock()
    mock_db.list_runs = AsyncMock(return_value=[_run("run-2"), _run("run-1")])
    mock_db.count_runs = AsyncMock(return_value=3)
    mock_db.get_run = AsyncMock(return_value=None)
    return mock_db


@pytest.fixture
def app(db: MagicMock) -> FastAPI:
    """App with the database dependency overridden; lifespan is not run."""
    app = create_app()
    app.dependency_overrides[get_db_dep] = lambda: db
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


class TestHealth:
    """Tests for GET /health."""

    def test_health_ok(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestListRuns:
    """Tests for GET /runs."""

    def test_returns_runs_and_pagination(self, client: TestClient, db: MagicMock) -> None:
        response = client.get("/runs", params={"limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert [r["id"] for r in body["runs"]] == ["run-2", "run-1"]
        assert body["total"] == 3
        assert body["has_more"] is True
        db.list_runs.assert_awaited_once_with(source_ref=None, status=None, limit=2, offset=0)

    def test_filters_are_forwarded(self, client: TestClient, db: MagicMock) -> None:
        response = client.get(
            "/runs", params={"status": "PARTIAL", "source_ref": "TICKET-42", "offset": 2}
        )

        assert response.status_code == 200
        kwargs = db.list_runs.await_args.kwargs
        assert kwargs["status"] == "PARTIAL"
        assert kwargs["source_ref"] == "TICKET-42"
        assert kwargs["offset"] == 2
        assert response.json()["has_more"] is False

    def test_invalid_status_is_rejected(self, client: TestClient) -> None:
        assert client.get("/runs", params={"status": "DONE"}).status_code == 422

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds(self, client: TestClient, limit: int) -> None:
        assert client.get("/runs", params={"limit": limit}).status_code == 422

    def test_unexpected_error_is_opaque_500(self, app: FastAPI, db: MagicMock) -> None:
        db.list_runs.side_effect = RuntimeError("disk on fire")
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/runs")

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}


class TestGetRun:
    """Tests for GET /runs/{id}."""

    def test_returns_run_with_steps(self, client: TestClient, db: MagicMock) -> None:
        run = _run("run-1", status="PARTIAL")
        run["steps"] = [{"id": "s1", "step_type": "PARSE", "status": "COMPLETED"}]
        db.get_run.return_value = run

        response = client.get("/runs/run-1")

        assert response.status_code == 200
        assert response.json()["steps"][0]["step_type"] == "PARSE"
        db.get_run.assert_awaited_once_with("run-1")

    def test_unknown_run_is_404(self, client: TestClient) -> None:
        response = client.get("/runs/missing")

        assert response.status_code == 404
        assert response.json() == {"detail": "Run not found", "error_code": "ERR-RUN-404"}

    def test_value_error_is_422(self, client: TestClient, db: MagicMock) -> None:
        db.get_run.side_effect = ValueError("bad run id")

        response = client.get("/runs/bad")

        assert response.status_code == 422
        assert response.json() == {"detail": "bad run id"}
