"""Automation pipeline orchestrator.

Drives one run through its stages, strictly in order:

    PARSE -> GENERATE -> VALIDATE -> (dry run exit) -> DEPLOY -> VERIFY -> (rollback)

Every stage is written to the run log before the next one starts. Remote
calls go through Retry -> Circuit Breaker -> Gateway. Failures never
escape ``run()``: the caller always receives an AutomationResult.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from ..circuit_breaker import CircuitBreakerRegistry
from ..contracts import (
    DeploymentGateway,
    MetadataGenerator,
    RequirementExtractor,
    RequirementSource,
    RunLog,
    TargetRegistry,
)
from ..errors import (
    AutomationError,
    ConfigurationError,
    DeploymentFailure,
    RollbackFailure,
    RunAbortedError,
    RunNotFoundError,
    ValidationError,
    VerificationFailure,
    error_message,
)
from ..gateway.resilient import ResilientGateway
from ..models import (
    AutomationResult,
    DeploymentDescriptor,
    DeploymentPackage,
    DeployOptions,
    GeneratedUnit,
    ParsedRequirements,
    RollbackResult,
    RunOptions,
    RunStatus,
    StepStatus,
    StepType,
    ValidationResult,
)
from ..retry import RetryConfig, RetryHandler
from ..targets import TargetSystem, resolve_target
from .config import DEFAULT_ORCHESTRATOR_CONFIG, OrchestratorConfig
from .packaging import build_deployment_package, unit_components
from .rollback import rollback_deployment
from .verification import verify_units

logger = logging.getLogger(__name__)

T = TypeVar("T")

GatewayFactory = Callable[[TargetSystem], DeploymentGateway]

DRY_RUN_WARNING = "Dry run completed. No deployment performed."
VALIDATION_WARNING = "Metadata validation failed. Review errors before deployment."
INVALID_METADATA_ERROR = "Cannot deploy invalid metadata"
NO_UNITS_ERROR = "No deployable units were generated"
VERIFY_WARNING = "Deployment verification failed. Manual verification recommended."
ROLLED_BACK_WARNING = "Deployment rolled back due to verification failure."
ROLLBACK_CRITICAL_WARNING = (
    "CRITICAL: Deployment verification failed and rollback also failed. "
    "Manual intervention required."
)
ABORT_ROLLED_BACK_WARNING = "Deployment rolled back because the run was aborted."
ABORT_ROLLBACK_CRITICAL_WARNING = (
    "CRITICAL: Run aborted after deployment and rollback also failed. "
    "Manual intervention required."
)

# Run log writes are cheap and local; retry them quickly.
RUN_LOG_RETRY_CONFIG = RetryConfig(max_retries=3, initial_delay=0.05, max_delay=1.0)


class _StageFailed(AutomationError):
    """A stage failed and its step has already been written as FAILED."""

    pass


@dataclass
class _RunState:
    """Mutable bookkeeping for one run."""

    run_id: str
    options: RunOptions
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    units: list[GeneratedUnit] | None = None
    deployment_id: str | None = None
    target: TargetSystem | None = None
    gateway: DeploymentGateway | None = None
    descriptor: DeploymentDescriptor | None = None
    rollback: RollbackResult | None = None
    rollback_attempted: bool = False
    stage: StepType | None = None

    def result(self, status: RunStatus) -> AutomationResult:
        return AutomationResult(
            run_id=self.run_id,
            status=status,
            metadata=self.units,
            deployment_id=self.deployment_id,
            errors=list(self.errors),
            warnings=list(self.warnings),
        )

    def metadata(self) -> dict[str, Any]:
        return {
            "units": self.units or [],
            "errors": self.errors,
            "warnings": self.warnings,
            "deployment": self.descriptor,
            "rollback": self.rollback,
        }


class AutomationOrchestrator:
    """Runs the automation pipeline against injected collaborators.

    One orchestrator may execute many runs concurrently. Circuit breakers
    live in the shared registry, so every run sees the same breaker state
    per operation class.

    Usage:
        orchestrator = AutomationOrchestrator(
            source, extractor, generator, db, registry,
            gateway_for=lambda target: HttpDeploymentGateway(target.endpoint),
        )
        result = await orchestrator.run(RunOptions("TICKET-42", "prod-org"))

    Args:
        source: Loads requirement documents.
        extractor: Turns document text into requirements.
        generator: Generates and validates units.
        run_log: Persists runs and steps.
        targets: Registry used to resolve (and redirect) deployment targets.
        gateway_for: Returns the gateway for a resolved target system.
        breakers: Shared circuit breaker registry.
        retry: Retry handler for gateway calls.
        log_retry: Retry handler for run log writes.
        config: Polling and verification settings.
    """

    def __init__(
        self,
        source: RequirementSource,
        extractor: RequirementExtractor,
        generator: MetadataGenerator,
        run_log: RunLog,
        targets: TargetRegistry,
        gateway_for: GatewayFactory,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        retry: RetryHandler | None = None,
        log_retry: RetryHandler | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._source = source
        self._extractor = extractor
        self._generator = generator
        self._run_log = run_log
        self._targets = targets
        self._gateway_for = gateway_for
        self._breakers = breakers or CircuitBreakerRegistry()
        self._retry = retry or RetryHandler()
        self._log_retry = log_retry or RetryHandler(RUN_LOG_RETRY_CONFIG)
        self._config = config or DEFAULT_ORCHESTRATOR_CONFIG
        self._active: dict[str, asyncio.Event] = {}

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def active_runs(self) -> list[str]:
        return list(self._active)

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, options: RunOptions) -> AutomationResult:
        """Execute the pipeline once.

        Returns:
            The structured outcome. Failures are reported in ``errors``
            with status FAILED or PARTIAL; nothing is raised except task
            cancellation, which is re-raised after the run is finalised.
        """
        state = _RunState(run_id=str(uuid.uuid4()), options=options)
        abort_event = options.abort_event or asyncio.Event()
        self._active[state.run_id] = abort_event
        try:
            await self._write(
                lambda: self._run_log.create_run(options.source_ref, run_id=state.run_id)
            )
            logger.info(
                "[%s] Starting automation run for %s (target=%s, dry_run=%s)",
                state.run_id,
                options.source_ref,
                options.target_ref,
                options.dry_run,
            )
            return await self._execute(state, abort_event)
        except asyncio.CancelledError:
            logger.warning("[%s] Run cancelled during %s", state.run_id, state.stage)
            # A second cancel must not interrupt the compensating rollback.
            await asyncio.shield(self._abandon(state, RunAbortedError("Run cancelled")))
            raise
        except Exception as e:
            return await self._abandon(state, e)
        finally:
            self._active.pop(state.run_id, None)

    def cancel(self, run_id: str) -> bool:
        """Ask a run executing on this orchestrator to abort between stages.

        Returns:
            True if the run was active.
        """
        event = self._active.get(run_id)
        if event is None:
            return False
        logger.info("[%s] Abort requested", run_id)
        event.set()
        return True

    async def get_status(self, run_id: str) -> dict[str, Any]:
        """Get a run with its ordered steps.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        run = await self._run_log.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def retry_run(self, run_id: str, *, dry_run: bool = False) -> AutomationResult:
        """Run the pipeline again for the source of a previous run.

        The target is taken from the last DEPLOY step of the previous run.
        Production is never forced on a retry.

        Raises:
            RunNotFoundError: If the run does not exist.
            ConfigurationError: If the run never reached DEPLOY.
        """
        run = await self.get_status(run_id)
        deploy_steps = [
            step for step in run.get("steps", []) if step["step_type"] == StepType.DEPLOY.value
        ]
        step_input = deploy_steps[-1]["input"] if deploy_steps else None
        if not isinstance(step_input, dict) or not step_input.get("target_ref"):
            msg = f"Run {run_id} never reached DEPLOY; no target to retry against"
            raise ConfigurationError(msg)

        logger.info("Retrying run %s for %s", run_id, run["source_ref"])
        return await self.run(
            RunOptions(
                source_ref=run["source_ref"],
                target_ref=step_input["target_ref"],
                dry_run=dry_run,
            )
        )

    # =========================================================================
    # Stages
    # =========================================================================

    async def _execute(self, state: _RunState, abort_event: asyncio.Event) -> AutomationResult:
        options = state.options

        self._check_abort(abort_event)
        parsed = await self._parse(state)

        self._check_abort(abort_event)
        units = await self._generate(state, parsed)

        self._check_abort(abort_event)
        await self._validate(state, units)

        if options.dry_run:
            state.warnings.append(DRY_RUN_WARNING)
            status = RunStatus.SUCCESS if not state.errors else RunStatus.FAILED
            await self._complete(state, status)
            return state.result(status)

        self._check_abort(abort_event)
        target, gateway = await self._deploy(state, units)

        if abort_event.is_set():
            logger.warning("[%s] Abort observed after deployment, rolling back", state.run_id)
            await self._rollback(
                state, gateway, target, ABORT_ROLLED_BACK_WARNING, ABORT_ROLLBACK_CRITICAL_WARNING
            )
            state.errors.append(str(RunAbortedError()))
            await self._complete(state, RunStatus.PARTIAL)
            return state.result(RunStatus.PARTIAL)

        await self._verify(state, units, gateway, target)

        status = RunStatus.SUCCESS if not state.errors else RunStatus.PARTIAL
        await self._complete(state, status)
        return state.result(status)

    async def _parse(self, state: _RunState) -> ParsedRequirements:
        options = state.options
        step_id = await self._start_step(
            state,
            StepType.PARSE,
            {"source_ref": options.source_ref, "include_context": options.include_context},
        )
        try:
            document = await self._source.load(options.source_ref)
            parsed = await self._extractor.parse(document.text, options.include_context)
            if document.acceptance_criteria:
                criteria = await self._extractor.parse(
                    document.acceptance_criteria, options.include_context
                )
                parsed = parsed.merge(criteria)
        except Exception as e:
            message = f"Failed to parse requirements: {error_message(e)}"
            await self._finish_step(step_id, StepStatus.FAILED, error=message)
            raise _StageFailed(message) from e

        state.warnings.extend(parsed.ambiguities)
        await self._finish_step(step_id, StepStatus.COMPLETED, output=parsed)
        logger.info(
            "[%s] Parsed %d field(s) and %d validation rule(s)",
            state.run_id,
            len(parsed.fields),
            len(parsed.validation_rules),
        )
        return parsed

    async def _generate(self, state: _RunState, parsed: ParsedRequirements) -> list[GeneratedUnit]:
        step_id = await self._start_step(
            state,
            StepType.GENERATE,
            {"fields": len(parsed.fields), "validation_rules": len(parsed.validation_rules)},
        )
        units: list[GeneratedUnit] = []
        failures: list[str] = []

        for field_req in parsed.fields:
            try:
                units.append(self._generator.generate_field(field_req))
            except Exception as e:
                failures.append(f"Failed to generate field {field_req.field_name}: {error_message(e)}")
        for rule_req in parsed.validation_rules:
            try:
                units.append(self._generator.generate_rule(rule_req))
            except Exception as e:
                failures.append(
                    f"Failed to generate validation rule {rule_req.rule_name}: {error_message(e)}"
                )

        for failure in failures:
            logger.warning("[%s] %s", state.run_id, failure)
        state.errors.extend(failures)
        state.units = units
        await self._finish_step(
            step_id, StepStatus.COMPLETED, output={"units": units, "errors": failures}
        )
        return units

    async def _validate(self, state: _RunState, units: list[GeneratedUnit]) -> None:
        step_id = await self._start_step(state, StepType.VALIDATE, {"units": len(units)})
        try:
            if units:
                validation = self._generator.validate(units)
            else:
                validation = ValidationResult(is_valid=False, errors=[NO_UNITS_ERROR])
        except Exception as e:
            message = f"Validation failed: {error_message(e)}"
            await self._finish_step(step_id, StepStatus.FAILED, error=message)
            raise _StageFailed(message) from e

        if validation.is_valid:
            await self._finish_step(step_id, StepStatus.COMPLETED, output=validation)
            return

        state.errors.extend(validation.errors)
        state.warnings.append(VALIDATION_WARNING)
        await self._finish_step(
            step_id, StepStatus.FAILED, output=validation, error="; ".join(validation.errors)
        )
        raise ValidationError(validation.errors, message=INVALID_METADATA_ERROR)

    async def _deploy(
        self, state: _RunState, units: list[GeneratedUnit]
    ) -> tuple[TargetSystem, DeploymentGateway]:
        options = state.options
        step_id = await self._start_step(
            state,
            StepType.DEPLOY,
            {
                "target_ref": options.target_ref,
                "deploy_to_production": options.deploy_to_production,
                "components": unit_components(units),
            },
        )
        try:
            target = resolve_target(self._targets, options.target_ref, options.deploy_to_production)
        except Exception as e:
            message = error_message(e)
            await self._finish_step(step_id, StepStatus.FAILED, error=message)
            raise

        gateway = ResilientGateway(self._gateway_for(target), self._breakers, self._retry)
        state.target, state.gateway = target, gateway
        package = build_deployment_package(units, self._config.api_version)
        try:
            submitted_at = datetime.now(timezone.utc)
            state.deployment_id = await gateway.deploy(package, DeployOptions(target_id=target.id))
            logger.info(
                "[%s] Deployment %s submitted to %s", state.run_id, state.deployment_id, target.id
            )
            poll = await gateway.poll_status(
                state.deployment_id, self._config.max_polls, self._config.poll_interval_seconds
            )
        except Exception as e:
            message = f"Deployment failed: {error_message(e)}"
            await self._finish_step(
                step_id,
                StepStatus.FAILED,
                output={"deployment_id": state.deployment_id, "target_id": target.id},
                error=message,
            )
            raise DeploymentFailure(message, deployment_id=state.deployment_id) from e

        if not poll.success:
            message = f"Deployment failed: {poll.error_message or 'Unknown error'}"
            await self._finish_step(
                step_id,
                StepStatus.FAILED,
                output={"deployment_id": state.deployment_id, "target_id": target.id, "poll": poll},
                error=message,
            )
            raise DeploymentFailure(message, deployment_id=state.deployment_id)

        state.descriptor = await self._describe_deployment(
            gateway, state.deployment_id, package, submitted_at, poll.status
        )
        await self._finish_step(
            step_id,
            StepStatus.COMPLETED,
            output={
                "deployment_id": state.deployment_id,
                "target_id": target.id,
                "poll": poll,
                "descriptor": state.descriptor,
            },
        )
        return target, gateway

    async def _describe_deployment(
        self,
        gateway: DeploymentGateway,
        deployment_id: str,
        package: DeploymentPackage,
        submitted_at: datetime,
        status: str,
    ) -> DeploymentDescriptor:
        """Record what the deployment contained.

        Falls back to the submitted package when the gateway cannot list
        the deployment's components.
        """
        components: tuple[Any, ...] = ()
        try:
            details = await gateway.get_deployment_details(deployment_id)
            components = details.components
        except Exception as e:
            logger.warning(
                "Could not fetch details of deployment %s, using submitted package: %s",
                deployment_id,
                e,
            )
        if not components:
            components = tuple(package.components())
        return DeploymentDescriptor(
            external_id=deployment_id,
            submitted_at=submitted_at,
            status=status,
            components=components,
        )

    async def _verify(
        self,
        state: _RunState,
        units: list[GeneratedUnit],
        gateway: DeploymentGateway,
        target: TargetSystem,
    ) -> None:
        step_id = await self._start_step(
            state,
            StepType.VERIFY,
            {"deployment_id": state.deployment_id, "components": [u.full_name for u in units]},
        )
        verification = await verify_units(gateway, units, self._config.verify_concurrency)
        if verification.success:
            await self._finish_step(step_id, StepStatus.COMPLETED, output=verification)
            logger.info("[%s] Verified %d component(s)", state.run_id, len(units))
            return

        failure = VerificationFailure(verification.missing)
        await self._finish_step(step_id, StepStatus.FAILED, output=verification, error=str(failure))
        logger.warning("[%s] %s", state.run_id, failure)
        state.errors.append(str(failure))
        state.warnings.append(VERIFY_WARNING)
        await self._rollback(state, gateway, target, ROLLED_BACK_WARNING, ROLLBACK_CRITICAL_WARNING)

    async def _rollback(
        self,
        state: _RunState,
        gateway: DeploymentGateway,
        target: TargetSystem,
        success_warning: str,
        critical_warning: str,
    ) -> None:
        if state.descriptor is None or state.rollback_attempted:
            return

        state.rollback_attempted = True
        try:
            state.rollback = await rollback_deployment(
                gateway, state.descriptor, self._config, target.id
            )
        except asyncio.CancelledError:
            state.rollback = RollbackResult(success=False, error="Rollback interrupted")
            self._record_rollback_failure(state, critical_warning)
            raise
        if state.rollback.success:
            state.warnings.append(success_warning)
            return
        self._record_rollback_failure(state, critical_warning)

    def _record_rollback_failure(self, state: _RunState, critical_warning: str) -> None:
        assert state.descriptor is not None and state.rollback is not None
        failure = RollbackFailure(
            f"Rollback failed: {state.rollback.error or 'Unknown error'}",
            deployment_id=state.descriptor.external_id,
        )
        logger.critical("[%s] %s", state.run_id, failure)
        state.errors.append(str(failure))
        state.warnings.append(critical_warning)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _check_abort(self, abort_event: asyncio.Event) -> None:
        if abort_event.is_set():
            raise RunAbortedError()

    async def _write(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self._log_retry.execute(fn)

    async def _start_step(self, state: _RunState, step_type: StepType, input_data: Any) -> str:
        step_id = str(uuid.uuid4())
        state.stage = step_type
        await self._write(
            lambda: self._run_log.start_step(step_id, state.run_id, step_type, input_data)
        )
        logger.debug("[%s] %s started", state.run_id, step_type.value)
        return step_id

    async def _finish_step(
        self,
        step_id: str,
        status: StepStatus,
        output: Any | None = None,
        error: str | None = None,
    ) -> None:
        await self._write(
            lambda: self._run_log.finish_step(step_id, status, output=output, error=error)
        )

    async def _complete(self, state: _RunState, status: RunStatus) -> None:
        await self._write(
            lambda: self._run_log.complete_run(
                state.run_id,
                status,
                state.metadata(),
                error="; ".join(state.errors) or None,
            )
        )
        logger.info("[%s] Run finished with status %s", state.run_id, status.value)

    async def _abandon(self, state: _RunState, error: BaseException) -> AutomationResult:
        """Finish a run interrupted by ``error``.

        Once a deployment has succeeded the run cannot simply fail: the
        deployment is rolled back first and the run finishes PARTIAL.
        """
        if state.descriptor is None or state.gateway is None or state.target is None:
            return await self._fail(state, error)

        logger.warning("[%s] Run interrupted after deployment, rolling back", state.run_id)
        await self._rollback(
            state,
            state.gateway,
            state.target,
            ABORT_ROLLED_BACK_WARNING,
            ABORT_ROLLBACK_CRITICAL_WARNING,
        )
        return await self._fail(state, error, RunStatus.PARTIAL)

    async def _fail(
        self,
        state: _RunState,
        error: BaseException,
        status: RunStatus = RunStatus.FAILED,
    ) -> AutomationResult:
        """Record an ERROR step and finish the run with ``status``.

        The run log may itself be what failed; in that case the failure is
        logged and the result is still returned.
        """
        message = error_message(error)
        state.errors.append(message)
        logger.error("[%s] Run failed during %s: %s", state.run_id, state.stage, message)

        error_step_id = str(uuid.uuid4())
        stage = state.stage.value if state.stage else None
        cause = error.__cause__ if isinstance(error, _StageFailed) else error
        error_type = type(cause or error).__name__
        try:
            await self._write(
                lambda: self._run_log.record_step(
                    state.run_id,
                    StepType.ERROR,
                    StepStatus.FAILED,
                    {"stage": stage},
                    output={"error": message, "error_type": error_type},
                    error=message,
                    step_id=error_step_id,
                )
            )
            await self._complete(state, status)
        except Exception as log_error:
            logger.error("[%s] Could not record run failure: %s", state.run_id, log_error)
        return state.result(status)
