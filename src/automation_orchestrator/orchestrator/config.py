"""Orchestrator tuning knobs."""

from __future__ import annotations

from dataclasses import dataclass

from ..gateway.http import DEFAULT_API_VERSION


@dataclass(frozen=True)
class OrchestratorConfig:
    """Polling and verification settings for a run.

    Attributes:
        max_polls: Status polls before a deployment is considered stuck.
        poll_interval_seconds: Delay between deployment status polls.
        rollback_max_polls: Status polls for the compensating deletion.
        rollback_poll_interval_seconds: Delay between rollback status polls.
        verify_concurrency: Component lookups in flight at once during VERIFY.
        api_version: Gateway API version stamped on every package.
    """

    max_polls: int = 30
    poll_interval_seconds: float = 2.0
    rollback_max_polls: int = 20
    rollback_poll_interval_seconds: float = 2.0
    verify_concurrency: int = 5
    api_version: str = DEFAULT_API_VERSION

    def __post_init__(self) -> None:
        if self.max_polls < 1 or self.rollback_max_polls < 1:
            msg = "max_polls and rollback_max_polls must be >= 1"
            raise ValueError(msg)
        if self.poll_interval_seconds < 0 or self.rollback_poll_interval_seconds < 0:
            msg = "poll intervals must be non-negative"
            raise ValueError(msg)
        if self.verify_concurrency < 1:
            msg = f"verify_concurrency must be >= 1, got {self.verify_concurrency}"
            raise ValueError(msg)
        if not self.api_version:
            msg = "api_version must not be empty"
            raise ValueError(msg)


DEFAULT_ORCHESTRATOR_CONFIG = OrchestratorConfig()
