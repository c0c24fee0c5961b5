"""
Run Cancellation

Cancels the outstanding work of a test run and waits until the remote
service reports nothing left queued for it.
"""

from __future__ import annotations

import asyncio
import logging
import time

from testall.common.resilience import SleepFn
from testall.common.telemetry import trace_async
from testall.config import TestallConfig
from testall.contracts.protocols import RemoteExecutor
from testall.exceptions import CancelTimeoutError
from testall.query import QueryHelper, chunked
from testall.runner.poll import ClockFn, PollTimeoutError, poll

logger = logging.getLogger(__name__)

# Retries when marking work items aborted, lower than the query default
MARK_ABORTED_RETRIES = 2


class CancelCoordinator:
    """
    Cancels in-flight work for a run.

    Marks every outstanding work item aborted, in chunks that stay under the
    per-request item limit, then polls on its own interval and timeout until
    the outstanding count reaches zero.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        query_helper: QueryHelper | None = None,
        poll_interval_seconds: float = 30.0,
        timeout_seconds: float = 600.0,
        chunk_size: int = 1000,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ):
        """
        Initialize the coordinator.

        Args:
            executor: Remote execution service
            query_helper: Retry helper for remote calls
            poll_interval_seconds: Seconds between outstanding-count polls
            timeout_seconds: Maximum seconds to wait for the run to drain
            chunk_size: Maximum work items per abort request
            sleep: Awaitable sleep, replaceable in tests
            clock: Monotonic clock, replaceable in tests
        """
        self._executor = executor
        self._query = query_helper or QueryHelper(sleep=sleep)
        self._poll_interval = poll_interval_seconds
        self._timeout = timeout_seconds
        self._chunk_size = chunk_size
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        executor: RemoteExecutor,
        config: TestallConfig,
        query_helper: QueryHelper | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ) -> CancelCoordinator:
        return cls(
            executor,
            query_helper=query_helper or QueryHelper(config.query_retry_config, sleep=sleep),
            poll_interval_seconds=config.cancel_poll_interval_seconds,
            timeout_seconds=config.cancel_timeout_seconds,
            chunk_size=config.mark_aborted_chunk_size,
            sleep=sleep,
            clock=clock,
        )

    @trace_async("testall.runner.cancel")
    async def cancel(self, job_id: str) -> list[str]:
        """
        Cancel a run and block until it has drained.

        Args:
            job_id: Run to cancel

        Returns:
            Ids of the work items that were marked aborted

        Raises:
            CancelTimeoutError: If work items are still outstanding at the timeout
            QueryError: If a remote call fails after retries
        """
        logger.info(f"Cancelling test run '{job_id}'")

        cancelled = await self._outstanding(job_id)
        for ids in chunked(cancelled, self._chunk_size):
            await self._query.run(
                lambda ids=ids: self._executor.mark_aborted(ids),
                stage="mark aborted",
                max_retries=MARK_ABORTED_RETRIES,
            )

        remaining = len(cancelled)

        def drained(outstanding: list[str]) -> bool:
            nonlocal remaining
            remaining = len(outstanding)
            if remaining:
                logger.info(f"Waiting for test run '{job_id}' to cancel... {remaining} tests queued")
            return remaining == 0

        try:
            await poll(
                lambda: self._outstanding(job_id),
                drained,
                interval=self._poll_interval,
                timeout=self._timeout,
                sleep=self._sleep,
                clock=self._clock,
            )
        except PollTimeoutError as e:
            raise CancelTimeoutError(job_id, self._timeout, remaining) from e

        logger.info(f"Test run '{job_id}' has been cancelled")
        return cancelled

    async def _outstanding(self, job_id: str) -> list[str]:
        ids = await self._query.run(
            lambda: self._executor.list_outstanding(job_id),
            stage="outstanding work items",
        )
        return list(ids)
