"""Deployment gateway implementations."""

from .http import DEFAULT_API_VERSION, SUCCEEDED, HttpDeploymentGateway
from .resilient import ResilientGateway

__all__ = [
    "DEFAULT_API_VERSION",
    "HttpDeploymentGateway",
    "ResilientGateway",
    "SUCCEEDED",
]
