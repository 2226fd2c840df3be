"""Automation Orchestrator.

This package turns structured change requirements into configuration
units, deploys them through a remote gateway with retries and circuit
breakers, verifies the result and rolls back on failure. Every run and
stage is recorded in an SQLite run log.
"""

from __future__ import annotations

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitOpenError
from .database import AutomationDB
from .extractor import FileRequirementSource, StructuredRequirementExtractor
from .gateway import HttpDeploymentGateway, ResilientGateway
from .generator import StandardMetadataGenerator
from .models import AutomationResult, RunOptions, RunStatus, StepStatus, StepType
from .orchestrator import AutomationOrchestrator, OrchestratorConfig
from .retry import RetryConfig, RetryHandler
from .targets import InMemoryTargetRegistry, TargetKind, TargetSystem

__version__ = "0.1.0"

__all__ = [
    "AutomationDB",
    "AutomationOrchestrator",
    "AutomationResult",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "FileRequirementSource",
    "HttpDeploymentGateway",
    "InMemoryTargetRegistry",
    "OrchestratorConfig",
    "ResilientGateway",
    "RetryConfig",
    "RetryHandler",
    "RunOptions",
    "RunStatus",
    "StandardMetadataGenerator",
    "StepStatus",
    "StepType",
    "StructuredRequirementExtractor",
    "TargetKind",
    "TargetSystem",
]
