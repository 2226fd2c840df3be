"""Run lifecycle: cancellation, status lookup, retries, shared breakers and
run log resilience."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from automation_orchestrator.circuit_breaker import CircuitBreakerRegistry
from automation_orchestrator.circuit_breaker_config import CircuitBreakerConfig, OperationClass
from automation_orchestrator.database import AutomationDB
from automation_orchestrator.errors import (
    ConfigurationError,
    RunLogWriteError,
    RunNotFoundError,
    ServerError,
)
from automation_orchestrator.models import PollResult, RunOptions, RunStatus, StepType
from automation_orchestrator.orchestrator import AutomationOrchestrator
from automation_orchestrator.orchestrator.core import (
    ABORT_ROLLBACK_CRITICAL_WARNING,
    ABORT_ROLLED_BACK_WARNING,
)
from automation_orchestrator.retry import RetryConfig, RetryHandler
from tests.fakes import SUCCEEDED_POLL, FakeGateway, FakeSource, RecordingSleep


def _steps(run: dict[str, Any]) -> list[tuple[str, str]]:
    return [(step["step_type"], step["status"]) for step in run["steps"]]


class TestAbort:
    """Caller-requested aborts between stages."""

    @pytest.mark.asyncio
    async def test_abort_before_start(
        self, orchestrator: AutomationOrchestrator, db: AutomationDB, gateway: FakeGateway
    ) -> None:
        abort = asyncio.Event()
        abort.set()

        result = await orchestrator.run(
            RunOptions(source_ref="TICKET-1", target_ref="prod", abort_event=abort)
        )

        assert result.status is RunStatus.FAILED
        assert result.errors == ["Run aborted by caller"]
        assert gateway.deploy_attempts == 0
        assert orchestrator.active_runs == []
        run = await db.get_run(result.run_id)
        assert run is not None
        assert _steps(run) == [("ERROR", "FAILED")]
        assert run["steps"][0]["input"] == {"stage": None}

    @pytest.mark.asyncio
    async def test_cancel_after_deploy_rolls_back(
        self, orchestrator: AutomationOrchestrator, db: AutomationDB, gateway: FakeGateway
    ) -> None:
        cancelled: list[bool] = []
        gateway.on_deploy = lambda _: cancelled.append(
            orchestrator.cancel(orchestrator.active_runs[0])
        )

        result = await orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))

        assert cancelled[0] is True
        assert result.status is RunStatus.PARTIAL
        assert result.errors == ["Run aborted by caller"]
        assert result.warnings == [ABORT_ROLLED_BACK_WARNING]
        assert len(gateway.deployments) == 2
        assert gateway.packages[1].destructive is True
        assert gateway.described == []

        run = await db.get_run(result.run_id)
        assert run is not None
        assert [s for s, _ in _steps(run)] == ["PARSE", "GENERATE", "VALIDATE", "DEPLOY"]

    @pytest.mark.asyncio
    async def test_abort_after_deploy_with_failed_rollback(
        self, orchestrator: AutomationOrchestrator, gateway: FakeGateway
    ) -> None:
        abort = asyncio.Event()
        gateway.on_deploy = lambda _: abort.set()
        gateway.poll_results["dep-2"] = PollResult(False, "Failed", error_message="locked")

        result = await orchestrator.run(
            RunOptions(source_ref="TICKET-1", target_ref="prod", abort_event=abort)
        )

        assert result.status is RunStatus.PARTIAL
        assert result.errors == ["Rollback failed: locked", "Run aborted by caller"]
        assert result.warnings == [ABORT_ROLLBACK_CRITICAL_WARNING]

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, orchestrator: AutomationOrchestrator) -> None:
        assert orchestrator.cancel("nope") is False

    @pytest.mark.asyncio
    async def test_task_cancellation_finalises_run(
        self, make_orchestrator: Any, db: AutomationDB
    ) -> None:
        source = FakeSource({"TICKET-1": "[]"}, block=asyncio.Event())
        orchestrator = make_orchestrator(source=source)

        task = asyncio.create_task(
            orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))
        )
        await source.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        runs = await db.list_runs()
        assert len(runs) == 1
        assert runs[0]["status"] == "FAILED"
        assert runs[0]["error"] == "Run cancelled"
        run = await db.get_run(runs[0]["id"])
        assert run is not None
        assert _steps(run) == [("PARSE", "RUNNING"), ("ERROR", "FAILED")]
        assert orchestrator.active_runs == []

    @pytest.mark.asyncio
    async def test_task_cancellation_during_verify_rolls_back(
        self, orchestrator: AutomationOrchestrator, db: AutomationDB, gateway: FakeGateway
    ) -> None:
        gateway.describe_block = asyncio.Event()

        task = asyncio.create_task(
            orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))
        )
        await gateway.describe_started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(gateway.deployments) == 2
        _, rollback_package, rollback_options = gateway.deployments[1]
        assert rollback_package.destructive is True
        assert rollback_options is not None
        assert rollback_options.rollback is True
        assert rollback_options.target_id == "staging"

        runs = await db.list_runs()
        assert len(runs) == 1
        assert runs[0]["status"] == "PARTIAL"
        assert runs[0]["error"] == "Run cancelled"
        run = await db.get_run(runs[0]["id"])
        assert run is not None
        assert _steps(run) == [
            ("PARSE", "COMPLETED"),
            ("GENERATE", "COMPLETED"),
            ("VALIDATE", "COMPLETED"),
            ("DEPLOY", "COMPLETED"),
            ("VERIFY", "RUNNING"),
            ("ERROR", "FAILED"),
        ]
        assert run["steps"][-1]["input"] == {"stage": "VERIFY"}
        assert orchestrator.active_runs == []

    @pytest.mark.asyncio
    async def test_run_log_failure_after_deploy_rolls_back(
        self, make_orchestrator: Any, gateway: FakeGateway
    ) -> None:
        async with _VerifyStepFailsRunLog() as run_log:
            orchestrator = make_orchestrator(run_log=run_log)

            result = await orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))

            assert result.status is RunStatus.PARTIAL
            assert result.errors == ["disk full"]
            assert result.warnings == [ABORT_ROLLED_BACK_WARNING]
            assert len(gateway.deployments) == 2
            assert gateway.deployments[1][2] is not None
            assert gateway.deployments[1][2].rollback is True
            assert gateway.described == []

            run = await run_log.get_run(result.run_id)
            assert run is not None
            assert run["status"] == "PARTIAL"
            assert _steps(run)[-1] == ("ERROR", "FAILED")


class TestStatusAndRetry:
    """Tests for get_status() and retry_run()."""

    @pytest.mark.asyncio
    async def test_get_status(self, orchestrator: AutomationOrchestrator) -> None:
        result = await orchestrator.run(
            RunOptions(source_ref="TICKET-1", target_ref="prod", dry_run=True)
        )

        status = await orchestrator.get_status(result.run_id)

        assert status["id"] == result.run_id
        assert status["status"] == "SUCCESS"
        assert len(status["steps"]) == 3

    @pytest.mark.asyncio
    async def test_get_status_unknown(self, orchestrator: AutomationOrchestrator) -> None:
        with pytest.raises(RunNotFoundError):
            await orchestrator.get_status("nope")

    @pytest.mark.asyncio
    async def test_retry_failed_run(
        self, orchestrator: AutomationOrchestrator, gateway: FakeGateway
    ) -> None:
        gateway.poll_default = PollResult(False, "Failed", error_message="Lock timeout")
        failed = await orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))
        assert failed.status is RunStatus.FAILED

        gateway.poll_default = SUCCEEDED_POLL
        retried = await orchestrator.retry_run(failed.run_id)

        assert retried.status is RunStatus.SUCCESS
        assert retried.run_id != failed.run_id
        _, _, options = gateway.deployments[-1]
        assert options is not None and options.target_id == "staging"

    @pytest.mark.asyncio
    async def test_retry_run_that_never_deployed(
        self, orchestrator: AutomationOrchestrator
    ) -> None:
        dry = await orchestrator.run(
            RunOptions(source_ref="TICKET-1", target_ref="prod", dry_run=True)
        )

        with pytest.raises(ConfigurationError, match="never reached DEPLOY"):
            await orchestrator.retry_run(dry.run_id)

    @pytest.mark.asyncio
    async def test_retry_unknown_run(self, orchestrator: AutomationOrchestrator) -> None:
        with pytest.raises(RunNotFoundError):
            await orchestrator.retry_run("nope")


class TestSharedBreakers:
    """Breaker state is shared by every run and orchestrator using the registry."""

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_later_runs(
        self, make_orchestrator: Any, gateway: FakeGateway
    ) -> None:
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=2, recovery_timeout_seconds=60)
        )
        no_retry = RetryHandler(RetryConfig(max_retries=0))
        first = make_orchestrator(breakers=registry, retry=no_retry)
        second = make_orchestrator(breakers=registry, retry=no_retry)
        gateway.deploy_error = ServerError(500, "Internal error")
        options = RunOptions(source_ref="TICKET-1", target_ref="prod")

        results = [
            await first.run(options),
            await second.run(options),
            await second.run(options),
        ]

        assert [r.status for r in results] == [RunStatus.FAILED] * 3
        assert results[0].errors == ["Deployment failed: HTTP 500: Internal error"]
        assert "Circuit deploy is open" in results[2].errors[0]
        assert gateway.deploy_attempts == 2
        assert registry.get(OperationClass.DEPLOY).is_open


class _FlakyRunLog(AutomationDB):
    """Run log whose first create_run hits a locked database."""

    def __init__(self) -> None:
        super().__init__(":memory:")
        self.create_attempts = 0

    async def create_run(self, source_ref: str, run_id: str | None = None) -> str:
        self.create_attempts += 1
        if self.create_attempts == 1:
            raise RunLogWriteError("database is locked")
        return await super().create_run(source_ref, run_id)


class _VerifyStepFailsRunLog(AutomationDB):
    """Run log that cannot record the start of VERIFY."""

    def __init__(self) -> None:
        super().__init__(":memory:")

    async def start_step(
        self, step_id: str, run_id: str, step_type: StepType, input_data: Any
    ) -> None:
        if step_type is StepType.VERIFY:
            raise RuntimeError("disk full")
        await super().start_step(step_id, run_id, step_type, input_data)


class TestRunLogResilience:
    """Run log writes are retried; a dead run log still yields a result."""

    @pytest.mark.asyncio
    async def test_locked_write_is_retried(
        self, make_orchestrator: Any, sleep: RecordingSleep
    ) -> None:
        async with _FlakyRunLog() as run_log:
            orchestrator = make_orchestrator(run_log=run_log)

            result = await orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))

            assert result.status is RunStatus.SUCCESS
            assert run_log.create_attempts == 2
            assert sleep.delays == [0.01]
            assert (await run_log.get_run(result.run_id))["status"] == "SUCCESS"

    @pytest.mark.asyncio
    async def test_broken_run_log_still_returns_result(self, make_orchestrator: Any) -> None:
        run_log = MagicMock()
        run_log.create_run = AsyncMock(side_effect=RuntimeError("disk full"))
        run_log.record_step = AsyncMock(side_effect=RuntimeError("disk full"))
        orchestrator = make_orchestrator(run_log=run_log)

        result = await orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod"))

        assert result.status is RunStatus.FAILED
        assert result.errors == ["disk full"]


class TestConcurrentRuns:
    """Runs on one orchestrator do not interfere."""

    @pytest.mark.asyncio
    async def test_concurrent_runs_keep_separate_audit_trails(
        self, orchestrator: AutomationOrchestrator, db: AutomationDB, gateway: FakeGateway
    ) -> None:
        results = await asyncio.gather(
            orchestrator.run(RunOptions(source_ref="TICKET-1", target_ref="prod")),
            orchestrator.run(RunOptions(source_ref="TICKET-ORPHAN", target_ref="prod")),
        )

        assert [r.status for r in results] == [RunStatus.SUCCESS, RunStatus.PARTIAL]
        assert results[0].run_id != results[1].run_id
        assert len(gateway.deployments) == 2
        for result in results:
            run = await db.get_run(result.run_id)
            assert run is not None
            assert [s for s, _ in _steps(run)] == [
                "PARSE",
                "GENERATE",
                "VALIDATE",
                "DEPLOY",
                "VERIFY",
            ]
