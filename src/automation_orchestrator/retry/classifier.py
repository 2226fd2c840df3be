"""Retryable/non-retryable classification of failures.

An error is retryable when it signals rate limiting, a timeout, a transient
network failure or one of the configured retryable status codes. Errors
that say something definite about the request (authorization, validation,
an open circuit) are never retried.
"""

from __future__ import annotations

import errno
from typing import Any

import httpx

from ..errors import (
    AuthorizationError,
    ConnectivityError,
    GenerationError,
    RateLimitError,
    RetryExhaustedError,
    TransientError,
    ValidationError,
)
from .config import DEFAULT_RETRY_CONFIG, RetryConfig

_NEVER_RETRY: tuple[type[BaseException], ...] = (
    AuthorizationError,
    ValidationError,
    GenerationError,
    ConnectivityError,
    RetryExhaustedError,
)

_TIMEOUT_CODES = frozenset({"ETIMEDOUT", "ESOCKETTIMEDOUT"})


def status_code_of(error: BaseException) -> int | None:
    """Extract an HTTP-like status code from an error, if it carries one."""
    for attr in ("status_code", "status", "statusCode"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response: Any = getattr(error, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def error_code_of(error: BaseException) -> str | None:
    """Extract an errno-style code (``ECONNRESET``...) from an error."""
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    number = getattr(error, "errno", None)
    if isinstance(number, int):
        return errno.errorcode.get(number)
    if isinstance(number, str):
        return number
    return None


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, RateLimitError):
        return True
    if status_code_of(error) == 429:
        return True
    return "rate limit" in str(error).lower()


def is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, (TimeoutError, httpx.TimeoutException)):
        return True
    if error_code_of(error) in _TIMEOUT_CODES:
        return True
    if type(error).__name__ == "TimeoutError":
        return True
    return "timeout" in str(error).lower()


def is_network_error(error: BaseException, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    if isinstance(error, (ConnectionError, httpx.NetworkError)):
        return True
    code = error_code_of(error)
    return code is not None and code in config.retryable_error_codes


def has_retryable_status_code(
    error: BaseException, config: RetryConfig = DEFAULT_RETRY_CONFIG
) -> bool:
    status = status_code_of(error)
    return status is not None and status in config.retryable_status_codes


def is_retryable(error: BaseException, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    """Decide whether an error is worth retrying under ``config``."""
    if isinstance(error, _NEVER_RETRY):
        return False
    if isinstance(error, TransientError):
        return True
    return (
        is_rate_limit_error(error)
        or is_timeout_error(error)
        or is_network_error(error, config)
        or has_retryable_status_code(error, config)
    )
