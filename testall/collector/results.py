"""
Result Collection

Fetches test results and coverage for a run and groups results by how the
driver should treat them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from testall.collector.matcher import ResultClassifier
from testall.common.telemetry import trace_async
from testall.config import TestallConfig
from testall.contracts.core import CoverageAggregate, Outcome, TestResult
from testall.contracts.protocols import RemoteExecutor
from testall.query import QueryHelper, chunked

logger = logging.getLogger(__name__)

T = TypeVar("T")

COVERAGE_CHUNK_SIZE = 500


@dataclass
class ResultGroups:
    """Results split by outcome class. Skipped results are in no group."""

    passed: list[TestResult] = field(default_factory=list)
    retryable: list[TestResult] = field(default_factory=list)
    failed: list[TestResult] = field(default_factory=list)


def group_records(results: Iterable[TestResult], classifier: ResultClassifier) -> ResultGroups:
    """
    Group results into passed, retry-eligible and genuinely failed.

    A non-passing, non-skipped result is retry-eligible when its message
    matches the classifier, otherwise it is a genuine failure.
    """
    groups = ResultGroups()
    for result in results:
        if result.outcome == Outcome.PASS:
            groups.passed.append(result)
        elif result.outcome == Outcome.SKIP:
            continue
        elif classifier.does_match_any(result.message):
            groups.retryable.append(result)
        else:
            groups.failed.append(result)
    return groups


class ResultAggregator:
    """
    Fetches results and coverage from the remote service.

    Result queries are paginated against the service's row cap. Coverage
    queries chunk their id lists and fetch the chunks concurrently, since
    the chunks address disjoint ids.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        query_helper: QueryHelper | None = None,
        page_size: int = 2000,
        chunk_size: int = COVERAGE_CHUNK_SIZE,
    ):
        self._executor = executor
        self._query = query_helper or QueryHelper()
        self._page_size = page_size
        self._chunk_size = chunk_size

    @classmethod
    def from_config(
        cls,
        executor: RemoteExecutor,
        config: TestallConfig,
        query_helper: QueryHelper | None = None,
    ) -> ResultAggregator:
        return cls(
            executor,
            query_helper=query_helper or QueryHelper(config.query_retry_config),
            page_size=config.results_page_size,
            chunk_size=config.coverage_chunk_size,
        )

    async def gather_results(self, job_id: str) -> list[TestResult]:
        """
        Fetch every result for a run, page by page.

        Raises:
            QueryError: If a page cannot be fetched after retries
        """
        results: list[TestResult] = []
        offset = 0
        while True:
            page = await self._query.run(
                lambda offset=offset: self._executor.results(job_id, offset, self._page_size),
                stage="test results",
            )
            results.extend(page)
            if len(page) < self._page_size:
                return results
            offset += len(page)

    @trace_async("testall.collector.coverage")
    async def gather_coverage(self, test_class_ids: Iterable[str | None]) -> list[CoverageAggregate]:
        """
        Fetch aggregate coverage for the classes touched by the given test classes.

        Args:
            test_class_ids: Ids of the test classes that ran

        Returns:
            Coverage per class under test, empty when no ids are given

        Raises:
            QueryError: Naming the stage that failed
        """
        ids = _unique(i for i in test_class_ids if i)
        if not ids:
            return []

        subject_ids = _unique(
            await self._gather_chunks(ids, self._executor.covered_subjects, "coverage subjects")
        )
        if not subject_ids:
            return []

        return await self._gather_chunks(
            subject_ids, self._executor.coverage_aggregates, "coverage aggregates"
        )

    async def _gather_chunks(
        self,
        ids: list[str],
        fetch: Callable[[list[str]], Awaitable[Sequence[T]]],
        stage: str,
    ) -> list[T]:
        pages = await asyncio.gather(
            *[
                self._query.run(lambda chunk=chunk: fetch(chunk), stage=stage)
                for chunk in chunked(ids, self._chunk_size)
            ]
        )
        return [item for page in pages for item in page]


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))
