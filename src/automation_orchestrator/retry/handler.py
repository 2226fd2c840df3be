"""Backoff retry handler.

Retries a wrapped coroutine with exponential backoff plus jitter. Only the
calling task sleeps (``asyncio.sleep``), so concurrent runs keep going while
one of them backs off.

Usage:
    handler = RetryHandler(RetryConfig(max_retries=3))
    deployment_id = await handler.execute(lambda: gateway.deploy(package))

    # Per-call overrides
    await handler.execute(fetch, max_retries=1, initial_delay=0.5)
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from ..errors import RetryExhaustedError
from .classifier import is_retryable
from .config import DEFAULT_RETRY_CONFIG, RATE_LIMIT_RETRY_CONFIG, RetryConfig

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]

_default_logger = logging.getLogger(__name__)


class RetryHandler:
    """Retry a coroutine function on retryable failures.

    Attributes:
        config: Default configuration for every call.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        logger: logging.Logger | None = None,
        sleep: SleepFunc | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            config: Default configuration. Uses DEFAULT_RETRY_CONFIG if None.
            logger: Logger for retry events. Defaults to this module's logger.
            sleep: Async sleep used between attempts. Defaults to asyncio.sleep.
            rng: Source of uniform floats in [0, 1) used for jitter.
        """
        self.config = config or DEFAULT_RETRY_CONFIG
        self._logger = logger or _default_logger
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.random

    async def execute(self, fn: Callable[[], Awaitable[T]], **overrides: Any) -> T:
        """Call ``fn`` until it succeeds, fails non-retryably, or retries run out.

        Args:
            fn: Zero-argument coroutine function to call.
            **overrides: RetryConfig fields to override for this call only.

        Returns:
            Whatever ``fn`` returns.

        Raises:
            RetryExhaustedError: After ``max_retries + 1`` retryable failures.
            Exception: Any non-retryable error, re-raised as-is on first sight.
        """
        config = self.config.with_overrides(**overrides)

        attempt = 0
        while True:
            try:
                result = await fn()
            except Exception as error:
                if not is_retryable(error, config):
                    self._logger.debug("Non-retryable error, giving up: %s", error)
                    raise

                if attempt >= config.max_retries:
                    self._logger.error(
                        "Max retry attempts exceeded (%d): %s", attempt + 1, error
                    )
                    raise RetryExhaustedError(attempt + 1, error) from error

                delay = self.calculate_delay(attempt, config)
                config.on_retry(attempt + 1, error, delay)
                self._logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt + 1,
                    config.max_retries + 1,
                    error,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                self._logger.info("Operation succeeded after %d retries", attempt)
            return result

    def calculate_delay(self, attempt: int, config: RetryConfig | None = None) -> float:
        """Backoff delay before retry number ``attempt + 1``.

        ``min(max_delay, initial_delay * multiplier**attempt)`` with +/- jitter
        applied only below the cap. Once the backoff reaches ``max_delay`` every
        later delay is exactly ``max_delay``.
        """
        config = config or self.config
        base = config.initial_delay * config.backoff_multiplier**attempt
        if base >= config.max_delay:
            return config.max_delay
        spread = base * config.jitter * (self._rng() - 0.5) * 2
        return max(0.0, min(config.max_delay, base + spread))


async def with_retry(fn: Callable[[], Awaitable[T]], config: RetryConfig | None = None) -> T:
    """One-off retry of ``fn`` with ``config``."""
    return await RetryHandler(config).execute(fn)


async def with_rate_limit_retry(fn: Callable[[], Awaitable[T]], **overrides: Any) -> T:
    """Retry profile for rate-limited APIs (10 retries, 2s initial, 60s cap)."""
    return await RetryHandler(RATE_LIMIT_RETRY_CONFIG).execute(fn, **overrides)
