"""
Tests for result fetching, coverage fetching and result grouping.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from testall.collector.matcher import DEFAULT_RERUN_PATTERNS, ResultClassifier
from testall.collector.results import ResultAggregator, group_records
from testall.config import QueryRetryConfig
from testall.contracts.core import CoverageAggregate, Outcome
from testall.exceptions import QueryError
from testall.query import QueryHelper


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.results = AsyncMock()
    executor.covered_subjects = AsyncMock()
    executor.coverage_aggregates = AsyncMock()
    return executor


@pytest.fixture
def query_helper(timer):
    return QueryHelper(QueryRetryConfig(max_retries=1, initial_delay_seconds=1.0), sleep=timer.sleep)


class TestGatherResults:
    """Tests for ResultAggregator.gather_results."""

    @pytest.mark.asyncio
    async def test_single_page(self, executor, query_helper, make_result):
        results = [make_result(method_name="m1"), make_result(method_name="m2")]
        executor.results.return_value = results
        aggregator = ResultAggregator(executor, query_helper, page_size=10)

        assert await aggregator.gather_results("job-1") == results
        executor.results.assert_awaited_once_with("job-1", 0, 10)

    @pytest.mark.asyncio
    async def test_paginates_until_short_page(self, executor, query_helper, make_result):
        pages = [
            [make_result(method_name="m1"), make_result(method_name="m2")],
            [make_result(method_name="m3"), make_result(method_name="m4")],
            [make_result(method_name="m5")],
        ]
        executor.results.side_effect = pages
        aggregator = ResultAggregator(executor, query_helper, page_size=2)

        results = await aggregator.gather_results("job-1")

        assert [r.method_name for r in results] == ["m1", "m2", "m3", "m4", "m5"]
        assert [c.args for c in executor.results.await_args_list] == [
            ("job-1", 0, 2),
            ("job-1", 2, 2),
            ("job-1", 4, 2),
        ]

    @pytest.mark.asyncio
    async def test_failure_names_stage(self, executor, query_helper):
        executor.results.side_effect = ConnectionError("down")
        aggregator = ResultAggregator(executor, query_helper)

        with pytest.raises(QueryError) as exc_info:
            await aggregator.gather_results("job-1")

        assert exc_info.value.stage == "test results"


class TestGatherCoverage:
    """Tests for ResultAggregator.gather_coverage."""

    @pytest.mark.asyncio
    async def test_empty_input_returns_empty(self, executor, query_helper):
        aggregator = ResultAggregator(executor, query_helper)

        assert await aggregator.gather_coverage([]) == []
        assert await aggregator.gather_coverage([None, ""]) == []
        executor.covered_subjects.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_two_stages(self, executor, query_helper):
        aggregate = CoverageAggregate(subject_id="s1", subject_name="Account", lines_covered=3, lines_uncovered=1)
        executor.covered_subjects.return_value = ["s1"]
        executor.coverage_aggregates.return_value = [aggregate]
        aggregator = ResultAggregator(executor, query_helper)

        coverage = await aggregator.gather_coverage(["c1", "c1", "c2"])

        assert coverage == [aggregate]
        executor.covered_subjects.assert_awaited_once_with(["c1", "c2"])
        executor.coverage_aggregates.assert_awaited_once_with(["s1"])

    @pytest.mark.asyncio
    async def test_chunks_ids(self, executor, query_helper):
        executor.covered_subjects.side_effect = lambda ids: [f"s-{i}" for i in ids]
        executor.coverage_aggregates.side_effect = lambda ids: [
            CoverageAggregate(subject_id=i, subject_name=i) for i in ids
        ]
        aggregator = ResultAggregator(executor, query_helper, chunk_size=500)
        ids = [f"c{i}" for i in range(1201)]

        coverage = await aggregator.gather_coverage(ids)

        assert len(coverage) == 1201
        assert [len(c.args[0]) for c in executor.covered_subjects.await_args_list] == [500, 500, 201]
        assert [len(c.args[0]) for c in executor.coverage_aggregates.await_args_list] == [500, 500, 201]

    @pytest.mark.asyncio
    async def test_no_subjects_skips_aggregates(self, executor, query_helper):
        executor.covered_subjects.return_value = []
        aggregator = ResultAggregator(executor, query_helper)

        assert await aggregator.gather_coverage(["c1"]) == []
        executor.coverage_aggregates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_subject_stage_failure(self, executor, query_helper):
        executor.covered_subjects.side_effect = ConnectionError("down")
        aggregator = ResultAggregator(executor, query_helper)

        with pytest.raises(QueryError) as exc_info:
            await aggregator.gather_coverage(["c1"])

        assert exc_info.value.stage == "coverage subjects"

    @pytest.mark.asyncio
    async def test_aggregate_stage_failure(self, executor, query_helper):
        executor.covered_subjects.return_value = ["s1"]
        executor.coverage_aggregates.side_effect = ConnectionError("down")
        aggregator = ResultAggregator(executor, query_helper)

        with pytest.raises(QueryError) as exc_info:
            await aggregator.gather_coverage(["c1"])

        assert exc_info.value.stage == "coverage aggregates"

    def test_from_config(self, executor, config):
        aggregator = ResultAggregator.from_config(executor, config)

        assert aggregator._page_size == config.results_page_size
        assert aggregator._chunk_size == config.coverage_chunk_size


class TestGroupRecords:
    """Tests for group_records."""

    def test_groups_by_outcome_and_pattern(self, make_result):
        classifier = ResultClassifier(DEFAULT_RERUN_PATTERNS)
        passed = make_result(method_name="m1")
        locked = make_result(method_name="m2", outcome=Outcome.FAIL, message="UNABLE_TO_LOCK_ROW")
        genuine = make_result(method_name="m3", outcome=Outcome.FAIL, message="Assertion failed")
        compile_fail = make_result(method_name="m4", outcome=Outcome.COMPILE_FAIL)
        skipped = make_result(method_name="m5", outcome=Outcome.SKIP, message="UNABLE_TO_LOCK_ROW")

        groups = group_records([passed, locked, genuine, compile_fail, skipped], classifier)

        assert groups.passed == [passed]
        assert groups.retryable == [locked]
        assert groups.failed == [genuine, compile_fail]

    def test_no_patterns_means_all_failures_genuine(self, make_result):
        failed = make_result(outcome=Outcome.FAIL, message="UNABLE_TO_LOCK_ROW")

        groups = group_records([failed], ResultClassifier([]))

        assert groups.retryable == []
        assert groups.failed == [failed]
