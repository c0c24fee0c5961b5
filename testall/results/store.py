"""
Test Result Store

Owns the results of one invocation while the driver fills gaps and re-runs
failures, and turns them into the final run summary.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from testall.contracts.core import (
    CoverageAggregate,
    Outcome,
    RunRecord,
    RunSummary,
    TestRerun,
    TestResult,
)
from testall.exceptions import GeneralError, TestallError
from testall.runner.runner import TestRunnerResult

logger = logging.getLogger(__name__)


class ResultStore:
    """
    Latest result per test plus the aggregate run record.

    Results are keyed by ``Class.method``; a later result for the same test
    replaces the earlier one. Each saved cycle's run record is kept and also
    merged into the aggregate.

    Not safe for concurrent writers. The driver is the only owner.
    """

    def __init__(self) -> None:
        self.run: RunRecord | None = None
        self.runs: list[RunRecord] = []
        self.job_ids: list[str] = []
        self.tests: dict[str, TestResult] = {}
        self.reruns: list[TestRerun] = []
        self.coverage: list[CoverageAggregate] | None = None
        self.error: TestallError | None = None

    @property
    def results(self) -> list[TestResult]:
        return list(self.tests.values())

    def keys(self) -> set[str]:
        return set(self.tests)

    def save_async_result(self, result: TestRunnerResult) -> None:
        """Merge one cycle's run record and results into the store."""
        self.runs.append(result.run)
        self.run = result.run if self.run is None else self.run.merge(result.run)
        self.job_ids.append(result.run.job_id)
        for test in result.tests:
            self.tests[test.key] = test

    def save_sync_results(self, reruns: Sequence[TestRerun]) -> None:
        """
        Record sequential re-runs.

        A passing re-run promotes the stored result to Pass, keeping the
        original message and stack trace. The aggregate run record gains
        the re-run time and loses one failure per promoted test.
        """
        self.reruns.extend(reruns)
        for rerun in reruns:
            if rerun.after.outcome == Outcome.PASS:
                self.tests[rerun.before.key] = promote(rerun.before, rerun.after)

        if self.run is not None and reruns:
            time = sum(r.after.run_time for r in reruns)
            passed = sum(1 for r in reruns if r.after.outcome == Outcome.PASS)
            # test_time can now exceed the sum of result run times
            self.run = self.run.model_copy(
                update={
                    "test_time": self.run.test_time + time,
                    "methods_failed": max(0, self.run.methods_failed - passed),
                }
            )

    def save_coverage(self, coverage: Iterable[CoverageAggregate]) -> None:
        self.coverage = list(coverage)

    def set_error(self, error: TestallError) -> None:
        self.error = error

    def to_run_summary(self, start_time: datetime) -> RunSummary:
        """
        Build the final summary.

        Raises:
            TestallError: The stored error, or a GeneralError, when no run
                record was ever saved
        """
        if self.run is None:
            raise self.error or GeneralError("Failed to generate results, no async run record")

        return RunSummary(
            start_time=start_time,
            results=tuple(self.tests.values()),
            run=self.run,
            job_ids=tuple(self.job_ids),
            reruns=tuple(self.reruns),
            coverage=tuple(self.coverage) if self.coverage is not None else None,
            error=str(self.error) if self.error else None,
        )


def promote(before: TestResult, after: TestResult) -> TestResult:
    """The original result marked Pass, timed from its re-run."""
    return before.model_copy(
        update={
            "outcome": Outcome.PASS,
            "run_time": after.run_time,
            "timestamp": after.timestamp or before.timestamp,
        }
    )


__all__ = ["ResultStore", "promote"]
