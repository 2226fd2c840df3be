"""Target system registry and production-to-staging redirection.

Deployments never go straight to a production-class system unless the
caller forces it: the nominal target is swapped for a staging-class system
registered for the same owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .contracts import TargetRegistry

logger = logging.getLogger(__name__)


class TargetKind(str, Enum):
    """Classes of target systems."""

    PRODUCTION = "production"
    STAGING = "staging"


@dataclass(frozen=True)
class TargetSystem:
    """A system the gateway can deploy to.

    Attributes:
        id: Stable reference used by callers.
        name: Human-readable name.
        kind: Production or staging class.
        owner: Owner used to pair production systems with staging ones.
        endpoint: Base URL of the system's deployment gateway.
    """

    id: str
    name: str
    kind: TargetKind
    owner: str | None = None
    endpoint: str = ""

    @property
    def is_production(self) -> bool:
        return self.kind is TargetKind.PRODUCTION


class InMemoryTargetRegistry:
    """Target registry backed by a fixed list (usually from config.toml)."""

    def __init__(self, targets: Iterable[TargetSystem] = ()) -> None:
        self._targets: dict[str, TargetSystem] = {}
        for target in targets:
            self.register(target)

    def register(self, target: TargetSystem) -> None:
        if target.id in self._targets:
            msg = f"Duplicate target system id: {target.id}"
            raise ValueError(msg)
        self._targets[target.id] = target

    def get(self, ref: str) -> TargetSystem:
        try:
            return self._targets[ref]
        except KeyError:
            raise ConfigurationError(f"Target system {ref} not found") from None

    def find_staging(self, owner: str | None) -> TargetSystem | None:
        for target in self._targets.values():
            if target.kind is TargetKind.STAGING and target.owner == owner:
                return target
        return None

    def __len__(self) -> int:
        return len(self._targets)


def resolve_target(registry: TargetRegistry, ref: str, deploy_to_production: bool) -> TargetSystem:
    """Resolve the system a run actually deploys to.

    Args:
        registry: A TargetRegistry.
        ref: Nominal target reference.
        deploy_to_production: If True, production targets are used as-is.

    Returns:
        The nominal target, or its registered staging counterpart.

    Raises:
        ConfigurationError: If the target is unknown, or if it is production
            and no staging system is registered for its owner.
    """
    target = registry.get(ref)
    if not target.is_production or deploy_to_production:
        return target

    staging = registry.find_staging(target.owner)
    if staging is None:
        msg = "No staging system found for deployment. Register a staging target first."
        raise ConfigurationError(msg)

    logger.info("Redirecting deployment from production %s to staging %s", target.id, staging.id)
    return staging
