"""
Polling

Fixed-interval polling with an overall timeout. Polls are strictly
sequential: the next one starts only after the previous one returned and
the interval elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from testall.common.resilience import SleepFn
from testall.exceptions import QueryError, TestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClockFn = Callable[[], float]


class PollTimeoutError(TestTimeoutError):
    """Polling did not satisfy its condition before the timeout."""

    def __init__(self, elapsed_seconds: float, last_error: Exception | None = None) -> None:
        super().__init__(f"Timeout after polling for {elapsed_seconds:.1f} seconds")
        self.elapsed_seconds = elapsed_seconds
        self.last_error = last_error


def retry_query_errors(error: Exception) -> bool:
    """Default poll retry policy: only transient query failures are retried."""
    return isinstance(error, QueryError)


async def poll(
    fetch: Callable[[], Awaitable[T]],
    until: Callable[[T], bool],
    interval: float,
    timeout: float,
    retry_if: Callable[[Exception], bool] = retry_query_errors,
    sleep: SleepFn = asyncio.sleep,
    clock: ClockFn = time.monotonic,
) -> T:
    """
    Call ``fetch`` until ``until`` accepts its result.

    The first call happens immediately. Errors accepted by ``retry_if`` are
    logged and polling continues; any other error propagates.

    Args:
        fetch: Coroutine factory performing one poll
        until: Predicate on a poll result that ends polling
        interval: Seconds to wait between polls
        timeout: Overall seconds allowed for polling
        retry_if: Predicate selecting poll errors to tolerate
        sleep: Awaitable sleep, replaceable in tests
        clock: Monotonic clock in seconds, replaceable in tests

    Returns:
        The first accepted poll result

    Raises:
        PollTimeoutError: If the timeout elapses first
    """
    started = clock()
    last_error: Exception | None = None

    while True:
        try:
            result = await fetch()
        except Exception as e:
            if not retry_if(e):
                raise
            logger.warning(f"Poll failed: {e}")
            last_error = e
        else:
            if until(result):
                return result

        elapsed = clock() - started
        if elapsed >= timeout:
            raise PollTimeoutError(elapsed, last_error)

        await sleep(interval)
