"""Pipeline orchestration: stages, packaging, verification and rollback."""

from .config import DEFAULT_ORCHESTRATOR_CONFIG, OrchestratorConfig
from .core import AutomationOrchestrator, GatewayFactory
from .packaging import build_deletion_package, build_deployment_package
from .rollback import rollback_deployment
from .verification import verify_units

__all__ = [
    "AutomationOrchestrator",
    "DEFAULT_ORCHESTRATOR_CONFIG",
    "GatewayFactory",
    "OrchestratorConfig",
    "build_deletion_package",
    "build_deployment_package",
    "rollback_deployment",
    "verify_units",
]
