"""Exception taxonomy for the automation orchestrator.

Errors fall into a few families that decide how the pipeline reacts:

- ValidationError / GenerationError: local problems, never retried, abort
  before anything is submitted to the gateway.
- TransientError: rate limits, timeouts, network blips. Absorbed by the
  retry handler and only visible once retries are exhausted.
- GatewayError: HTTP-level failures reported by the deployment gateway.
- DeploymentFailure / VerificationFailure / RollbackFailure: saga outcomes.
"""

from __future__ import annotations

from typing import Any


class AutomationError(Exception):
    """Base error for everything raised by this package."""

    pass


class ConfigurationError(AutomationError):
    """Raised when the environment cannot support the requested run."""

    pass


class ValidationError(AutomationError):
    """Raised when generated units fail local validation.

    Attributes:
        errors: Individual validation messages.
    """

    def __init__(self, errors: list[str], message: str | None = None) -> None:
        self.errors = list(errors)
        super().__init__(message or "; ".join(self.errors) or "Validation failed")


class GenerationError(AutomationError):
    """Raised when a requirement cannot be turned into a unit.

    Attributes:
        requirement_name: Name of the offending requirement.
    """

    def __init__(self, requirement_name: str, message: str) -> None:
        self.requirement_name = requirement_name
        super().__init__(message)


# =============================================================================
# Transient errors (retryable)
# =============================================================================


class TransientError(AutomationError):
    """Base error for failures expected to clear up on their own."""

    pass


class RateLimitError(TransientError):
    """Raised when the gateway signals rate limiting (HTTP 429).

    Attributes:
        status_code: Always 429.
        retry_after: Seconds suggested by the server, if any.
    """

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class GatewayTimeoutError(TransientError):
    """Raised when a gateway request times out."""

    code = "ETIMEDOUT"


class NetworkError(TransientError):
    """Raised on connection refused/reset/unreachable failures.

    Attributes:
        code: Errno-style code, e.g. ``ECONNREFUSED``.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class RunLogWriteError(TransientError):
    """Raised when the run log could not persist a write (e.g. database locked)."""

    pass


# =============================================================================
# Gateway HTTP errors
# =============================================================================


class GatewayError(AutomationError):
    """Base error for non-2xx gateway responses.

    Attributes:
        status_code: The HTTP status code returned by the gateway.
        message: A human-readable error description.
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


class AuthorizationError(GatewayError):
    """Raised on 401/403 responses. Never retried."""

    def __init__(self, status_code: int = 401, message: str = "Not authorized") -> None:
        super().__init__(status_code=status_code, message=message)


class NotFoundError(GatewayError):
    """Raised when the gateway returns 404 Not Found."""

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(status_code=404, message=message)


class ServerError(GatewayError):
    """Raised when the gateway returns a 5xx response."""

    def __init__(self, status_code: int = 500, message: str = "Server error") -> None:
        super().__init__(status_code=status_code, message=message)


class ConnectivityError(AutomationError):
    """Raised when a dependency is unreachable without having been called."""

    pass


class RetryExhaustedError(AutomationError):
    """Raised after the retry handler gives up.

    Attributes:
        attempts: Total number of attempts made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


# =============================================================================
# Saga outcomes
# =============================================================================


class DeploymentFailure(AutomationError):
    """Raised when a deployment does not reach a successful terminal state."""

    def __init__(self, message: str, deployment_id: str | None = None) -> None:
        self.deployment_id = deployment_id
        super().__init__(message)


class VerificationFailure(AutomationError):
    """Raised when deployed components cannot all be found afterwards.

    Attributes:
        missing: Fully-qualified names that were not found.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Components not found after deployment: {', '.join(self.missing)}")


class RollbackFailure(AutomationError):
    """Raised when the compensating deletion could not be completed."""

    def __init__(self, message: str, deployment_id: str | None = None) -> None:
        self.deployment_id = deployment_id
        super().__init__(message)


# =============================================================================
# Run bookkeeping
# =============================================================================


class RunNotFoundError(AutomationError):
    """Raised when a run id does not exist in the run log."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Automation run {run_id} not found")


class RunAbortedError(AutomationError):
    """Raised internally when the caller aborts a run between stages."""

    def __init__(self, message: str = "Run aborted by caller") -> None:
        super().__init__(message)


def error_message(error: Any) -> str:
    """Return a printable message for an arbitrary exception."""
    text = str(error)
    return text if text else type(error).__name__
