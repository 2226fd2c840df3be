"""Retry with exponential backoff and jitter.

Classifies failures as retryable or not and re-invokes the wrapped
operation with growing, jittered delays until it succeeds or the retry
budget is spent.
"""

from .classifier import is_retryable
from .config import (
    DEFAULT_RETRY_CONFIG,
    RATE_LIMIT_RETRY_CONFIG,
    RetryConfig,
)
from .handler import RetryHandler, with_rate_limit_retry, with_retry

__all__ = [
    "DEFAULT_RETRY_CONFIG",
    "RATE_LIMIT_RETRY_CONFIG",
    "RetryConfig",
    "RetryHandler",
    "is_retryable",
    "with_rate_limit_retry",
    "with_retry",
]
