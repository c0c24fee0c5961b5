"""
Retry with Exponential Backoff

Retries failed operations, doubling the wait after each failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 4
    base_delay: float = 30.0
    max_delay: float | None = None  # None = no cap
    exponential_base: float = 2.0
    jitter: bool = False
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: SleepFn = asyncio.sleep,
    **kwargs,
) -> T:
    """
    Retry an async function with exponential backoff.

    The first retry waits ``base_delay``; each later retry waits
    ``exponential_base`` times longer than the one before. The failure cause
    is logged on every failed attempt, including the last.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        config: Retry configuration
        on_retry: Optional callback(attempt, error, delay) before each wait
        sleep: Awaitable sleep, replaceable in tests
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        Exception: Last exception after all attempts are exhausted

    Example:
        config = RetryConfig(max_attempts=3, base_delay=0.5)
        records = await retry_with_backoff(executor.status, job_id, config=config)
    """
    config = config or RetryConfig()
    attempts = max(config.max_attempts, 1)

    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            logger.warning(f"Request failed (attempt {attempt}/{attempts}). Cause: {e}")

            if attempt == attempts:
                logger.warning(f"Retry exhausted after {attempt} attempts: {e}")
                raise

            delay = config.base_delay * (config.exponential_base ** (attempt - 1))
            if config.max_delay is not None:
                delay = min(delay, config.max_delay)
            if config.jitter:
                delay = delay * (0.5 + random.random())

            logger.info(f"Retrying failed request, waiting {delay:.2f}s")

            if on_retry:
                on_retry(attempt, e, delay)

            await sleep(delay)

    raise RuntimeError("Retry logic error")
