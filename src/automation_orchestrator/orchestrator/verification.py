"""Post-deployment verification.

Every unit is looked up independently; lookups run concurrently, bounded
by a semaphore. A lookup that raises counts as "not found" for that unit
only.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from ..contracts import DeploymentGateway
from ..errors import error_message
from ..models import ComponentCheck, GeneratedUnit, VerificationResult

logger = logging.getLogger(__name__)


async def _check_unit(
    gateway: DeploymentGateway, unit: GeneratedUnit, semaphore: asyncio.Semaphore
) -> ComponentCheck:
    component_type = unit.kind.component_type
    async with semaphore:
        try:
            described = await gateway.describe_component(component_type, unit.full_name)
        except Exception as e:
            logger.warning("Lookup of %s %s failed: %s", component_type, unit.full_name, e)
            return ComponentCheck(
                full_name=unit.full_name,
                component_type=component_type,
                found=False,
                error=error_message(e),
            )
    return ComponentCheck(
        full_name=unit.full_name, component_type=component_type, found=described is not None
    )


async def verify_units(
    gateway: DeploymentGateway, units: Iterable[GeneratedUnit], concurrency: int = 5
) -> VerificationResult:
    """Check that every unit exists on the target after deployment.

    Args:
        gateway: Gateway of the system that was deployed to.
        units: Units that were deployed.
        concurrency: Maximum lookups in flight.

    Returns:
        Result with one check per unit, in unit order.
    """
    semaphore = asyncio.Semaphore(concurrency)
    checks = await asyncio.gather(*(_check_unit(gateway, unit, semaphore) for unit in units))
    return VerificationResult(success=all(check.found for check in checks), checks=tuple(checks))
