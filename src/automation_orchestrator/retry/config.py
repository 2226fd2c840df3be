"""Retry handler configuration.

Every field can be overridden for a single call via
``RetryHandler.execute(fn, **overrides)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable

OnRetryHook = Callable[[int, BaseException, float], None]

DEFAULT_RETRYABLE_ERROR_CODES: frozenset[str] = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "ENOTFOUND",
        "ENETUNREACH",
        "ECONNREFUSED",
    }
)

DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset(
    {
        429,  # Too Many Requests
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }
)


def _noop_on_retry(attempt: int, error: BaseException, delay: float) -> None:
    return None


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for exponential backoff with jitter.

    Attributes:
        max_retries: Retries after the first attempt (total calls = max_retries + 1).
        initial_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        backoff_multiplier: Growth factor per attempt.
        jitter: Fractional jitter applied to each delay (0.2 = +/-20%).
        retryable_error_codes: Errno-style codes treated as transient network failures.
        retryable_status_codes: HTTP status codes treated as transient.
        on_retry: Observer called with (attempt, error, delay) before each sleep.
    """

    max_retries: int = 5
    initial_delay: float = 1.0
    max_delay: float = 32.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.2
    retryable_error_codes: frozenset[str] = DEFAULT_RETRYABLE_ERROR_CODES
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    on_retry: OnRetryHook = field(default=_noop_on_retry, compare=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            msg = f"max_retries must be >= 0, got {self.max_retries}"
            raise ValueError(msg)
        if self.initial_delay < 0 or self.max_delay < 0:
            msg = "delays must be non-negative"
            raise ValueError(msg)
        if self.backoff_multiplier < 1:
            msg = f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            raise ValueError(msg)
        if not 0 <= self.jitter < 1:
            msg = f"jitter must be in [0, 1), got {self.jitter}"
            raise ValueError(msg)

    def with_overrides(self, **overrides: Any) -> RetryConfig:
        """Return a copy with the given fields replaced (None values are ignored)."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


DEFAULT_RETRY_CONFIG = RetryConfig()

# Aggressive profile for rate-limited endpoints.
RATE_LIMIT_RETRY_CONFIG = RetryConfig(max_retries=10, initial_delay=2.0, max_delay=60.0)
