"""
Query Retry Helper

Runs remote queries with exponential-backoff retry and converts the final
failure into a QueryError naming the stage that failed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from testall.common.resilience import RetryConfig, SleepFn, retry_with_backoff
from testall.config import QueryRetryConfig
from testall.exceptions import QueryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueryHelper:
    """
    Executes remote queries with bounded retry.

    The default retry policy is injected once at construction and shared by
    every call made through this helper; individual calls may override it.

    Example:
        helper = QueryHelper(config.query_retry_config)
        records = await helper.run(lambda: executor.status(job_id), stage="run status")
    """

    def __init__(
        self,
        retry_config: QueryRetryConfig | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize the helper.

        Args:
            retry_config: Default retry count and initial delay
            sleep: Awaitable sleep used between attempts
        """
        self.retry_config = retry_config or QueryRetryConfig()
        self._sleep = sleep

    async def run(
        self,
        query_fn: Callable[[], Awaitable[T]],
        stage: str = "query",
        max_retries: int | None = None,
        initial_delay: float | None = None,
    ) -> T:
        """
        Invoke ``query_fn``, retrying on any failure.

        Waits ``initial_delay`` seconds after the first failure and doubles the
        wait after each further failure, retrying up to ``max_retries`` times.

        Args:
            query_fn: Zero-argument coroutine factory performing the query
            stage: Name of the query, used in logs and errors
            max_retries: Override for the configured retry count
            initial_delay: Override for the configured initial delay in seconds

        Returns:
            The query result

        Raises:
            QueryError: When every attempt failed
        """
        retries = self.retry_config.max_retries if max_retries is None else max_retries
        delay = (
            self.retry_config.initial_delay_seconds if initial_delay is None else initial_delay
        )
        config = RetryConfig(
            max_attempts=retries + 1,
            base_delay=delay,
            exponential_base=2.0,
            jitter=False,
        )
        try:
            return await retry_with_backoff(query_fn, config=config, sleep=self._sleep)
        except QueryError:
            raise
        except Exception as e:
            logger.error(f"Query '{stage}' failed after {retries + 1} attempts: {e}")
            raise QueryError(stage, str(e) or type(e).__name__) from e
