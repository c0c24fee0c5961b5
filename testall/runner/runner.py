"""
Async Test Runner

Drives one submission of a test batch: submit, poll to a terminal status,
and cancel-and-resubmit when the run stops making progress. The overall
poll timeout and the number of resubmissions are both bounded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from testall.collector.results import ResultAggregator
from testall.common.resilience import SleepFn
from testall.common.telemetry import get_tracer
from testall.config import TestallConfig
from testall.contracts.core import Outcome, RunRecord, RunStatus, TestItem, TestResult
from testall.contracts.protocols import RemoteExecutor, RunAborter
from testall.exceptions import GeneralError, QueryError, RetryExhaustedError, RunTimeoutError
from testall.query import QueryHelper
from testall.runner.cancel import CancelCoordinator
from testall.runner.poll import ClockFn, PollTimeoutError, poll
from testall.runner.stats import RunStats

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class CancellationToken:
    """Cooperative cancellation flag, observed by the runner between polls."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class RunCallbacks:
    """Optional observers for runner events. Purely informational."""

    on_run_started: Callable[[str], None] | None = None
    on_poll: Callable[[list[TestResult]], None] | None = None


@dataclass(frozen=True)
class TestRunnerResult:
    """Terminal run record of a cycle plus the results seen on its last poll."""

    run: RunRecord
    tests: list[TestResult] = field(default_factory=list)


@runtime_checkable
class TestRunner(Protocol):
    """A runner the driver can invoke and re-scope to a subset of tests."""

    def get_test_classes(self) -> list[str]:
        ...

    async def run(self, token: CancellationToken | None = None) -> TestRunnerResult:
        ...

    def new_runner(self, items: Sequence[TestItem]) -> TestRunner:
        ...


class AsyncTestRunner:
    """
    Runs a batch of tests asynchronously on the remote service.

    A run that makes no progress for ``hang_stall_threshold`` consecutive polls
    is cancelled and the same batch is submitted again, up to
    ``max_run_retries`` submissions in total. Pass no items to run every
    local test.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        items: Sequence[TestItem],
        config: TestallConfig | None = None,
        aborter: RunAborter | None = None,
        aggregator: ResultAggregator | None = None,
        query_helper: QueryHelper | None = None,
        callbacks: RunCallbacks | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ):
        """
        Initialize the runner.

        Args:
            executor: Remote execution service
            items: Tests to submit, empty for all local tests
            config: Polling, timeout and retry settings
            aborter: Cancels hanging or cancelled runs (default: CancelCoordinator)
            aggregator: Fetches results while polling
            query_helper: Retry helper shared by remote calls
            callbacks: Optional event observers
            sleep: Awaitable sleep, replaceable in tests
            clock: Monotonic clock, replaceable in tests
        """
        self._executor = executor
        self._items = list(items)
        self._config = config or TestallConfig()
        self._sleep = sleep
        self._clock = clock
        self._query = query_helper or QueryHelper(self._config.query_retry_config, sleep=sleep)
        self._aborter = aborter or CancelCoordinator.from_config(
            executor, self._config, query_helper=self._query, sleep=sleep, clock=clock
        )
        self._aggregator = aggregator or ResultAggregator.from_config(
            executor, self._config, query_helper=self._query
        )
        self._callbacks = callbacks or RunCallbacks()
        self._stats = RunStats.initial(self._config.hang_stall_threshold)

    @classmethod
    def for_classes(
        cls,
        executor: RemoteExecutor,
        namespace: str | None,
        class_names: Sequence[str],
        config: TestallConfig | None = None,
        **kwargs,
    ) -> AsyncTestRunner:
        """Create a runner for whole test classes."""
        items = [TestItem(class_name=name, namespace=namespace or None) for name in class_names]
        return cls(executor, items, config=config, **kwargs)

    @property
    def stats(self) -> RunStats:
        return self._stats

    @property
    def items(self) -> list[TestItem]:
        return list(self._items)

    def get_test_classes(self) -> list[str]:
        return [item.class_name for item in self._items if item.class_name]

    def new_runner(self, items: Sequence[TestItem]) -> AsyncTestRunner:
        """Create a runner for different items, sharing collaborators but not progress state."""
        return AsyncTestRunner(
            self._executor,
            items,
            config=self._config,
            aborter=self._aborter,
            aggregator=self._aggregator,
            query_helper=self._query,
            callbacks=self._callbacks,
            sleep=self._sleep,
            clock=self._clock,
        )

    async def run(self, token: CancellationToken | None = None) -> TestRunnerResult:
        """
        Submit the batch and wait for it to reach a terminal status.

        Args:
            token: Optional cancellation token checked at every poll

        Returns:
            The terminal run record and results. When cancelled the run is
            aborted remotely and the record's status is Aborted.

        Raises:
            RunTimeoutError: If the run exceeds the run timeout
            RetryExhaustedError: If the run hung on every allowed submission
            GeneralError: If the service does not return exactly one run record
            QueryError: If a remote call fails after retries
        """
        max_retries = self._config.max_run_retries
        # Resets are one less than submissions, 2 resets == 3 submissions
        if self._stats.reset_count > max_retries - 1:
            raise RetryExhaustedError(max_retries)

        with tracer.start_as_current_span("testall.runner.cycle") as span:
            span.set_attribute("testall.items", len(self._items))
            span.set_attribute("testall.resets", self._stats.reset_count)

            job_id = await self._query.run(
                lambda: self._executor.submit(
                    self._items, skip_coverage=not self._config.collect_coverage
                ),
                stage="submit test run",
                max_retries=0,
            )
            span.set_attribute("testall.job_id", job_id)

        if self._callbacks.on_run_started:
            self._callbacks.on_run_started(job_id)
        logger.info(f"Test run started with job id: {job_id}")

        result = await self._wait_for_completion(job_id, token)

        if token is not None and token.is_cancellation_requested:
            await self._aborter.cancel(job_id)
            return TestRunnerResult(
                run=result.run.model_copy(update={"status": RunStatus.ABORTED}),
                tests=result.tests,
            )

        if not result.run.status.is_terminal and self._stats.is_hanging:
            logger.info(f"Test run '{job_id}' was not progressing, cancelling and retrying...")
            self._stats = self._stats.reset()
            await self._aborter.cancel(job_id)
            return await self.run(token)

        return result

    async def _wait_for_completion(
        self, job_id: str, token: CancellationToken | None
    ) -> TestRunnerResult:
        seen: set[str] = set()
        last: TestRunnerResult | None = None

        def cancelled() -> bool:
            return token is not None and token.is_cancellation_requested

        async def fetch() -> TestRunnerResult:
            nonlocal seen, last
            run = await self._run_record(job_id)
            tests = await self._aggregator.gather_results(job_id)
            self._update_progress(run, tests)
            seen = self._notify_new_results(tests, seen)
            last = TestRunnerResult(run=run, tests=tests)
            return last

        def finished(result: TestRunnerResult) -> bool:
            return cancelled() or result.run.status.is_terminal or self._stats.is_hanging

        def retry_if(error: Exception) -> bool:
            return not cancelled() and isinstance(error, QueryError)

        try:
            return await poll(
                fetch,
                finished,
                interval=self._config.poll_interval_seconds,
                timeout=self._config.run_timeout_seconds,
                retry_if=retry_if,
                sleep=self._sleep,
                clock=self._clock,
            )
        except PollTimeoutError as e:
            error = RunTimeoutError(job_id, self._config.run_timeout_seconds)
            logger.error(str(error))
            raise error from e
        except QueryError as e:
            if not cancelled():
                raise
            # The caller aborts the job once it sees the token
            logger.warning(f"Polling '{job_id}' failed after cancellation was requested: {e}")
            return last or TestRunnerResult(run=RunRecord(job_id=job_id, status=RunStatus.ABORTED))

    async def _run_record(self, job_id: str) -> RunRecord:
        records = await self._query.run(
            lambda: self._executor.status(job_id),
            stage="run status",
        )
        if len(records) != 1:
            raise GeneralError(
                f"Wrong number of run records found for '{job_id}', "
                f"found {len(records)}, expected 1"
            )
        return records[0]

    def _update_progress(self, run: RunRecord, tests: list[TestResult]) -> None:
        passed = sum(1 for t in tests if t.outcome == Outcome.PASS)
        failed = sum(1 for t in tests if t.is_failure)
        completed = len(tests)
        total = run.methods_enqueued
        complete_pct = (completed * 100) // total if total > 0 else 0
        logger.info(
            f"[{run.status.value}] Passed: {passed} | Failed: {failed} | "
            f"{completed}/{total} Complete ({complete_pct}%)"
        )
        self._stats = self._stats.update(completed)

    def _notify_new_results(self, tests: list[TestResult], seen: set[str]) -> set[str]:
        new_results = [t for t in tests if t.id not in seen]
        if new_results and self._callbacks.on_poll:
            self._callbacks.on_poll(new_results)
        return seen | {t.id for t in new_results}
