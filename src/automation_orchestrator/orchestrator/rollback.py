"""Compensating rollback of a deployment."""

from __future__ import annotations

import logging

from ..contracts import DeploymentGateway
from ..errors import RollbackFailure, error_message
from ..gateway.http import SUCCEEDED
from ..models import DeploymentDescriptor, DeployOptions, RollbackResult
from .config import OrchestratorConfig
from .packaging import build_deletion_package

logger = logging.getLogger(__name__)


async def rollback_deployment(
    gateway: DeploymentGateway,
    descriptor: DeploymentDescriptor,
    config: OrchestratorConfig,
    target_id: str | None = None,
) -> RollbackResult:
    """Delete exactly what a deployment submitted.

    Called at most once per run. Never raises for gateway problems: every
    failure is reported through the returned RollbackResult.

    Args:
        gateway: Resilient gateway of the system that was deployed to.
        descriptor: Record of the deployment being compensated.
        config: Supplies rollback polling settings and the API version.
        target_id: System the deletion is submitted to.

    Returns:
        RollbackResult; success only when the deletion reached ``Succeeded``.
    """
    package = build_deletion_package(descriptor, config.api_version)
    logger.info(
        "Rolling back deployment %s (%d components)",
        descriptor.external_id,
        len(descriptor.components),
    )

    rollback_id: str | None = None
    try:
        rollback_id = await gateway.deploy(package, DeployOptions(target_id=target_id, rollback=True))
        poll = await gateway.poll_status(
            rollback_id, config.rollback_max_polls, config.rollback_poll_interval_seconds
        )
        if not poll.success or poll.status != SUCCEEDED:
            raise RollbackFailure(
                poll.error_message or f"Rollback finished with status {poll.status}",
                deployment_id=descriptor.external_id,
            )
    except Exception as e:
        logger.error("Rollback of deployment %s failed: %s", descriptor.external_id, e)
        return RollbackResult(success=False, rollback_id=rollback_id, error=error_message(e))

    logger.info("Rollback %s of deployment %s succeeded", rollback_id, descriptor.external_id)
    return RollbackResult(success=True, rollback_id=rollback_id)
