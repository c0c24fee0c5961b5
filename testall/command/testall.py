"""
Testall Driver

Runs a batch of tests to completion despite an unreliable remote service.

The strategy is to run the requested tests, then keep resubmitting any
expected tests the service silently dropped until every one has a result.
Failures caused by row-lock and deadlock contention are re-run one at a time
so that re-running does not add to the contention. Other failures are re-run
only when the rerun option asks for it.

Gap-filling stops early when too many genuine failures accumulate, since
further retries would only make a failing run take longer.

Usage:
    driver = Testall(executor, config, generators=[JSONReportGenerator()])
    summary = await driver.run(runner, collector)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from datetime import datetime, timezone

from testall.collector.matcher import ResultClassifier
from testall.collector.results import ResultAggregator, ResultGroups, group_records
from testall.common.telemetry import get_tracer, record_exception
from testall.config import TestallConfig
from testall.contracts.core import (
    ExpectedSet,
    RerunOption,
    RunStatus,
    RunSummary,
    TestItem,
    TestRerun,
    TestResult,
)
from testall.contracts.protocols import RemoteExecutor, TestDiscovery
from testall.exceptions import GeneralError, QueryError
from testall.query import QueryHelper
from testall.results.generators import OutputGenerator
from testall.results.store import ResultStore
from testall.results.utils import get_test_name
from testall.runner.runner import CancellationToken, TestRunner

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def _resolved(value: ExpectedSet) -> asyncio.Future[ExpectedSet]:
    future: asyncio.Future[ExpectedSet] = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def _log_discovery_failure(task: asyncio.Task[ExpectedSet]) -> None:
    # Retrieves the exception of a discovery no cycle ended up awaiting
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Test discovery failed: {task.exception()}")


def find_missing(expected: ExpectedSet, observed: set[str]) -> ExpectedSet:
    """Expected methods with no observed ``Class.method`` result, grouped by class."""
    missing: ExpectedSet = {}
    for class_name, methods in expected.items():
        for method_name in methods:
            if f"{class_name}.{method_name}" not in observed:
                missing.setdefault(class_name, set()).add(method_name)
    return missing


def missing_keys(missing: ExpectedSet) -> set[str]:
    return {f"{c}.{m}" for c, methods in missing.items() for m in methods}


class Testall:
    """
    Top-level control loop for one invocation.

    Owns the result store for the invocation. Cycles run strictly one after
    another, so at most one batch is in flight on the remote service.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        config: TestallConfig | None = None,
        classifier: ResultClassifier | None = None,
        generators: Sequence[OutputGenerator] = (),
        namespace: str | None = None,
        query_helper: QueryHelper | None = None,
        aggregator: ResultAggregator | None = None,
    ):
        """
        Initialize the driver.

        Args:
            executor: Remote execution service, used for sequential re-runs
            config: Run configuration
            classifier: Decides which failures are contention (default: nearest patterns file)
            generators: Report generators, run once after the run is final
            namespace: Namespace of the tests being run
            query_helper: Retry helper for remote calls
            aggregator: Coverage fetcher
        """
        self._executor = executor
        self._config = config or TestallConfig()
        self._classifier = classifier or ResultClassifier.create(
            file_name=self._config.rerun_patterns_file
        )
        self._generators = list(generators)
        self._namespace = namespace or None
        self._query = query_helper or QueryHelper(self._config.query_retry_config)
        self._aggregator = aggregator or ResultAggregator.from_config(
            executor, self._config, query_helper=self._query
        )

    @property
    def max_errors_for_rerun(self) -> int:
        return self._config.max_errors_for_rerun

    async def run(
        self,
        runner: TestRunner,
        discovery: TestDiscovery,
        token: CancellationToken | None = None,
    ) -> RunSummary | None:
        """
        Run the tests, fill in missing results and re-run failures.

        Args:
            runner: Runner for the initial batch
            discovery: Source of the tests expected to run
            token: Optional cancellation token

        Returns:
            The final summary, or None when the run was aborted

        Raises:
            TestallError: On query, timeout, retry or invariant failures
        """
        logger.info(
            f"Starting test run, with max failing tests for re-run {self.max_errors_for_rerun}"
        )
        start_time = datetime.now(timezone.utc)
        store = ResultStore()

        # Discovery may be slow, so it runs alongside the first cycle
        expected = asyncio.create_task(discovery.expected_test_set())
        expected.add_done_callback(_log_discovery_failure)

        with tracer.start_as_current_span("testall.run") as span:
            try:
                completed = await self.async_run(0, runner, expected, store, token)
            except Exception as e:
                record_exception(e, span)
                logger.error(f"Test run failed: {e}")
                raise
            finally:
                # Stop discovery if no cycle needed it
                expected.cancel()

            if not completed:
                logger.info("Test run was aborted, no results will be reported")
                return None

            groups = group_records(store.results, self._classifier)
            await self.run_sequentially(self.select_reruns(groups), store)

            if self._config.collect_coverage and not self._config.disable_coverage_report:
                await self._gather_coverage(store)

            summary = store.to_run_summary(start_time)
            span.set_attribute("testall.results", len(summary.results))
            span.set_attribute("testall.cycles", len(summary.job_ids))

        for generator in self._generators:
            path = await generator.generate(
                summary, self._config.output_dir, self._config.output_file_name
            )
            logger.info(f"Wrote {path}")

        return summary

    async def async_run(
        self,
        prior_failures: int,
        runner: TestRunner,
        expected: Awaitable[ExpectedSet],
        store: ResultStore,
        token: CancellationToken | None = None,
        previous_missing: set[str] | None = None,
    ) -> bool:
        """
        Run one cycle and recurse on the tests it did not produce.

        Args:
            prior_failures: Genuine failures seen in earlier cycles
            runner: Runner scoped to this cycle's items
            expected: Tests this cycle should produce
            store: Store for the invocation
            token: Optional cancellation token
            previous_missing: Keys that were missing before this cycle, None on the first

        Returns:
            False if this or a nested cycle was aborted, otherwise True
        """
        result = await runner.run(token)
        if result.run.status == RunStatus.ABORTED:
            return False

        store.save_async_result(result)

        # Too many genuine failures, give up on gap-filling
        groups = group_records(result.tests, self._classifier)
        failures = prior_failures + len(groups.failed)
        if failures > self.max_errors_for_rerun:
            logger.info(
                f"Aborting missing test check as {failures} failed - max re-run limit exceeded"
            )
            return True

        missing = find_missing(await expected, store.keys())
        if not missing:
            return True

        keys = missing_keys(missing)
        if previous_missing is not None and not keys < previous_missing:
            error = GeneralError(
                f"Missing test check made no progress, {len(keys)} methods still not run"
            )
            logger.error(str(error))
            store.set_error(error)
            return True

        method_count = sum(len(methods) for methods in missing.values())
        logger.info(
            f"Found {method_count} methods in {len(missing)} classes were not run, trying again..."
        )

        items = [
            TestItem(
                class_name=class_name,
                namespace=self._namespace,
                test_methods=tuple(sorted(methods)),
            )
            for class_name, methods in missing.items()
        ]
        return await self.async_run(
            failures,
            runner.new_runner(items),
            _resolved(missing),
            store,
            token,
            keys,
        )

    def select_reruns(self, groups: ResultGroups) -> list[TestResult]:
        """Choose failures for sequential re-run, pattern matches first."""
        option = self._config.rerun_option
        if option == RerunOption.ALL:
            return groups.retryable + groups.failed
        if option == RerunOption.LIMIT:
            if len(groups.failed) <= self.max_errors_for_rerun:
                return groups.retryable + groups.failed
            logger.info("Max re-run limit exceeded, running pattern matched tests only")
        return list(groups.retryable)

    async def run_sequentially(self, tests: Sequence[TestResult], store: ResultStore) -> None:
        """Re-run each test on its own, one after another, and record the outcomes."""
        if not tests:
            logger.info("No matching test failures to re-run")
            return

        matched = sum(1 for t in tests if self._classifier.does_match_any(t.message))
        if matched == len(tests):
            logger.info(f"Running {len(tests)} failed tests sequentially (matched patterns)")
        else:
            logger.info(
                f"Running {len(tests)} failed tests sequentially "
                f"({matched} tests matched patterns)"
            )

        reruns: list[TestRerun] = []
        for test in tests:
            rerun = await self._rerun_single_test(test)
            if rerun is not None:
                reruns.append(rerun)

        store.save_sync_results(reruns)

    async def _rerun_single_test(self, test: TestResult) -> TestRerun | None:
        name = get_test_name(test)
        item = TestItem(
            class_id=test.class_id,
            class_name=test.class_name,
            namespace=test.namespace,
            test_methods=(test.method_name,),
        )

        try:
            after = await self._query.run(
                lambda: self._executor.run_single_synchronous(item),
                stage="synchronous test run",
            )
        except QueryError as e:
            logger.warning(f"{name} re-run failed, cause: {e.reason}")
            return None

        if after is None:
            logger.warning(f"{name} re-run failed, cause: no test result returned")
            return None

        logger.info(f"{name} re-run complete, outcome = {after.outcome.value}")
        return TestRerun(name=name, before=test, after=after)

    async def _gather_coverage(self, store: ResultStore) -> None:
        if store.reruns or len(store.job_ids) > 1:
            logger.warning("Test run has reruns, so coverage report may not be complete")

        coverage = await self._aggregator.gather_coverage(r.class_id for r in store.results)
        store.save_coverage(coverage)
        logger.info(f"Collected coverage for {len(coverage)} classes")


__all__ = ["Testall", "find_missing", "missing_keys"]
