"""
Tests for the in-memory executor, and end-to-end runs against it.
"""

import json

import pytest

from testall.collector.matcher import DEFAULT_RERUN_PATTERNS, ResultClassifier
from testall.collector.methods import CatalogTestMethodCollector
from testall.command.testall import Testall
from testall.config import QueryRetryConfig
from testall.contracts.core import CoverageAggregate, Outcome, RunStatus, TestItem
from testall.contracts.protocols import RemoteExecutor, TestCatalog
from testall.executor.memory import InMemoryRemoteExecutor
from testall.query import QueryHelper
from testall.results.generators import JSONReportGenerator
from testall.runner.runner import AsyncTestRunner

CLASSES = {"FooTest": ["m1", "m2"], "BarTest": ["m1"]}


class TestInMemoryRemoteExecutor:
    """Tests for the simulated service itself."""

    @pytest.mark.asyncio
    async def test_runs_progress_per_poll(self):
        executor = InMemoryRemoteExecutor(CLASSES, methods_per_poll=2)
        job_id = await executor.submit([])

        first = await executor.status(job_id)
        second = await executor.status(job_id)

        assert first[0].status == RunStatus.PROCESSING
        assert first[0].methods_completed == 2
        assert second[0].status == RunStatus.COMPLETED
        assert second[0].methods_enqueued == 3
        assert len(await executor.results(job_id)) == 3

    @pytest.mark.asyncio
    async def test_results_pagination(self):
        executor = InMemoryRemoteExecutor(CLASSES)
        job_id = await executor.submit([])
        await executor.status(job_id)

        assert len(await executor.results(job_id, 0, 2)) == 2
        assert len(await executor.results(job_id, 2, 2)) == 1

    @pytest.mark.asyncio
    async def test_unknown_job_has_no_records(self):
        executor = InMemoryRemoteExecutor(CLASSES)

        assert await executor.status("nope") == []

    @pytest.mark.asyncio
    async def test_dropped_tests_only_dropped_once(self):
        executor = InMemoryRemoteExecutor(CLASSES, drop={"FooTest.m2"})

        first = await executor.submit([TestItem(class_name="FooTest")])
        second = await executor.submit([TestItem(class_name="FooTest")])
        await executor.status(first)
        await executor.status(second)

        assert [r.key for r in await executor.results(first)] == ["FooTest.m1"]
        assert [r.key for r in await executor.results(second)] == ["FooTest.m1", "FooTest.m2"]

    @pytest.mark.asyncio
    async def test_failure_messages(self):
        executor = InMemoryRemoteExecutor(
            CLASSES,
            outcomes={"FooTest.m1": Outcome.FAIL, "FooTest.m2": Outcome.FAIL},
            messages={"FooTest.m1": "UNABLE_TO_LOCK_ROW"},
        )
        job_id = await executor.submit([TestItem(class_name="FooTest")])
        await executor.status(job_id)

        results = {r.method_name: r for r in await executor.results(job_id)}
        assert results["m1"].message == "UNABLE_TO_LOCK_ROW"
        assert results["m2"].message == "Assertion failed"
        assert results["m1"].stack_trace

    @pytest.mark.asyncio
    async def test_cancel_hanging_run(self):
        executor = InMemoryRemoteExecutor(CLASSES, hang_submissions=1)
        job_id = await executor.submit([])
        await executor.status(job_id)

        outstanding = await executor.list_outstanding(job_id)
        await executor.mark_aborted(outstanding)

        assert outstanding == [f"{job_id}-q-FooTest", f"{job_id}-q-BarTest"]
        assert (await executor.status(job_id))[0].status == RunStatus.ABORTED
        assert await executor.list_outstanding(job_id) == []

    @pytest.mark.asyncio
    async def test_synchronous_run(self):
        executor = InMemoryRemoteExecutor(CLASSES, sync_outcomes={"FooTest.m2": Outcome.FAIL})

        passed = await executor.run_single_synchronous(
            TestItem(class_name="FooTest", test_methods=("m1",))
        )
        failed = await executor.run_single_synchronous(
            TestItem(class_id="cls-FooTest", test_methods=("m2",))
        )

        assert passed.outcome == Outcome.PASS
        assert passed.job_id == "sync"
        assert failed.outcome == Outcome.FAIL
        assert await executor.run_single_synchronous(TestItem(class_name="Unknown")) is None

    @pytest.mark.asyncio
    async def test_catalog(self):
        executor = InMemoryRemoteExecutor(CLASSES, namespace="ns")

        assert await executor.list_classes("ns", ["BarTest"]) == {"cls-BarTest": "BarTest"}
        assert await executor.list_classes(None, []) == {}
        assert await executor.list_test_methods(["cls-FooTest", "cls-Missing"]) == {
            "FooTest": {"m1", "m2"}
        }

    @pytest.mark.asyncio
    async def test_coverage(self):
        aggregate = CoverageAggregate(subject_id="s1", subject_name="Account", lines_covered=2)
        executor = InMemoryRemoteExecutor(CLASSES, coverage={"FooTest": [aggregate]})

        subjects = await executor.covered_subjects(["cls-FooTest", "cls-BarTest"])

        assert subjects == ["s1"]
        assert await executor.coverage_aggregates(subjects) == [aggregate]

    def test_satisfies_protocols(self):
        executor = InMemoryRemoteExecutor(CLASSES)

        assert isinstance(executor, RemoteExecutor)
        assert isinstance(executor, TestCatalog)


class TestEndToEnd:
    """Full runs through the driver, runner and collectors."""

    @pytest.fixture
    def run_all(self, config, timer):
        async def _run(executor, run_config=None, generators=()):
            run_config = run_config or config
            query_helper = QueryHelper(
                QueryRetryConfig(max_retries=1, initial_delay_seconds=0.1), sleep=timer.sleep
            )
            runner = AsyncTestRunner.for_classes(
                executor,
                None,
                list(CLASSES),
                config=run_config,
                query_helper=query_helper,
                sleep=timer.sleep,
                clock=timer.clock,
            )
            discovery = CatalogTestMethodCollector(
                executor, None, list(CLASSES), query_helper=query_helper
            )
            driver = Testall(
                executor,
                config=run_config,
                classifier=ResultClassifier(DEFAULT_RERUN_PATTERNS),
                generators=generators,
                query_helper=query_helper,
            )
            return await driver.run(runner, discovery)

        return _run

    @pytest.mark.asyncio
    async def test_clean_run(self, run_all):
        executor = InMemoryRemoteExecutor(CLASSES, methods_per_poll=1)

        summary = await run_all(executor)

        assert summary.passed_count == 3
        assert summary.job_ids == ("job-1",)
        assert executor.sync_runs == []

    @pytest.mark.asyncio
    async def test_dropped_test_is_resubmitted(self, run_all):
        executor = InMemoryRemoteExecutor(CLASSES, drop={"FooTest.m2"})

        summary = await run_all(executor)

        assert {r.key for r in summary.results} == {"FooTest.m1", "FooTest.m2", "BarTest.m1"}
        assert summary.job_ids == ("job-1", "job-2")
        assert executor.submissions[1] == [TestItem(class_name="FooTest", test_methods=("m2",))]

    @pytest.mark.asyncio
    async def test_contention_failure_promoted(self, run_all):
        executor = InMemoryRemoteExecutor(
            CLASSES,
            outcomes={"FooTest.m1": Outcome.FAIL},
            messages={"FooTest.m1": "System.DmlException: UNABLE_TO_LOCK_ROW"},
        )

        summary = await run_all(executor)

        assert summary.failed_count == 0
        assert summary.run.methods_failed == 0
        assert [item.test_methods for item in executor.sync_runs] == [("m1",)]
        assert summary.reruns[0].before.outcome == Outcome.FAIL

    @pytest.mark.asyncio
    async def test_hanging_run_is_resubmitted(self, run_all):
        executor = InMemoryRemoteExecutor(CLASSES, hang_submissions=1)

        summary = await run_all(executor)

        assert summary.passed_count == 3
        assert len(executor.submissions) == 2
        assert executor.aborted_ids == ["job-1-q-FooTest", "job-1-q-BarTest"]
        # The hung cycle never reached the driver
        assert summary.job_ids == ("job-2",)

    @pytest.mark.asyncio
    async def test_coverage_and_report(self, run_all, config, tmp_path):
        aggregate = CoverageAggregate(
            subject_id="s1", subject_name="Account", lines_covered=3, lines_uncovered=1
        )
        executor = InMemoryRemoteExecutor(CLASSES, coverage={"FooTest": [aggregate]})
        run_config = config.model_copy(
            update={"collect_coverage": True, "output_dir": str(tmp_path)}
        )

        summary = await run_all(executor, run_config, generators=[JSONReportGenerator()])

        assert summary.coverage == (aggregate,)
        data = json.loads((tmp_path / "test-result.json").read_text())
        assert data["summary"]["tests_ran"] == 3
        assert data["coverage"][0]["subject_id"] == "s1"
