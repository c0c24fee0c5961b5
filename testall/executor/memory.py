"""
In-Memory Remote Executor

A simulated test execution service, used by tests and by the CLI's
``--simulate`` mode. It reproduces the failure modes the driver has to cope
with: runs that silently drop tests, runs that stop making progress, and
contention failures that pass when re-run on their own.

Usage:
    executor = InMemoryRemoteExecutor(
        {"FooTest": ["m1", "m2"]},
        outcomes={"FooTest.m2": Outcome.FAIL},
        messages={"FooTest.m2": "UNABLE_TO_LOCK_ROW"},
        drop={"FooTest.m1"},
    )
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from testall.contracts.core import (
    CoverageAggregate,
    ExpectedSet,
    Outcome,
    RunRecord,
    RunStatus,
    TestItem,
    TestResult,
)

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    """Mutable state of one simulated run."""

    job_id: str
    tests: list[tuple[str, str]]
    skip_coverage: bool
    hanging: bool = False
    status: RunStatus = RunStatus.QUEUED
    pending: list[tuple[str, str]] = field(default_factory=list)
    results: list[TestResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None

    def queue_item_id(self, class_name: str) -> str:
        return f"{self.job_id}-q-{class_name}"


class InMemoryRemoteExecutor:
    """
    Simulated execution service holding every run in memory.

    Each status query advances an in-flight run by ``methods_per_poll``
    methods (all remaining methods when None). Outcomes default to Pass.

    Args:
        classes: Test methods declared by each test class
        namespace: Namespace the classes belong to
        methods_per_poll: Methods completed per status query
        outcomes: Outcome per ``Class.method`` in batch runs
        messages: Failure message per ``Class.method``
        drop: ``Class.method`` keys silently left out of the next run that includes them
        hang_submissions: Number of initial submissions that never progress
        sync_outcomes: Outcome per ``Class.method`` for synchronous re-runs
        coverage: Coverage per class under test, keyed by the covering test class name
        run_time_ms: Reported run time of every test method
    """

    def __init__(
        self,
        classes: Mapping[str, Sequence[str]],
        namespace: str | None = None,
        methods_per_poll: int | None = None,
        outcomes: Mapping[str, Outcome] | None = None,
        messages: Mapping[str, str] | None = None,
        drop: Iterable[str] = (),
        hang_submissions: int = 0,
        sync_outcomes: Mapping[str, Outcome] | None = None,
        coverage: Mapping[str, Sequence[CoverageAggregate]] | None = None,
        run_time_ms: int = 10,
    ):
        self._classes = {name: list(methods) for name, methods in classes.items()}
        self._class_ids = {name: f"cls-{name}" for name in self._classes}
        self._namespace = namespace or None
        self._methods_per_poll = methods_per_poll
        self._outcomes = dict(outcomes or {})
        self._messages = dict(messages or {})
        self._drop = set(drop)
        self._hang_submissions = hang_submissions
        self._sync_outcomes = dict(sync_outcomes or {})
        self._coverage = {name: list(aggs) for name, aggs in (coverage or {}).items()}
        self._run_time_ms = run_time_ms

        self._jobs: dict[str, _Job] = {}
        self._result_count = 0
        self.submissions: list[list[TestItem]] = []
        self.sync_runs: list[TestItem] = []
        self.aborted_ids: list[str] = []

    @property
    def class_ids(self) -> dict[str, str]:
        """Class id by class name."""
        return dict(self._class_ids)

    # =========================================================================
    # RemoteExecutor
    # =========================================================================

    async def submit(self, items: Sequence[TestItem], skip_coverage: bool = True) -> str:
        self.submissions.append(list(items))
        job_id = f"job-{len(self.submissions)}"

        tests = self._resolve_items(items)
        job = _Job(
            job_id=job_id,
            tests=tests,
            skip_coverage=skip_coverage,
            hanging=len(self.submissions) <= self._hang_submissions,
        )

        dropped = {key for key in self._drop if key in {f"{c}.{m}" for c, m in tests}}
        self._drop -= dropped
        job.pending = [(c, m) for c, m in tests if f"{c}.{m}" not in dropped]
        if dropped:
            logger.debug(f"Simulated run '{job_id}' dropping {sorted(dropped)}")

        self._jobs[job_id] = job
        return job_id

    async def status(self, job_id: str) -> list[RunRecord]:
        job = self._jobs.get(job_id)
        if job is None:
            return []
        self._advance(job)
        return [self._run_record(job)]

    async def results(
        self, job_id: str, offset: int = 0, limit: int | None = None
    ) -> list[TestResult]:
        job = self._jobs.get(job_id)
        if job is None:
            return []
        end = None if limit is None else offset + limit
        return job.results[offset:end]

    async def run_single_synchronous(self, item: TestItem) -> TestResult | None:
        self.sync_runs.append(item)
        tests = self._resolve_items([item])
        if not tests:
            return None
        class_name, method_name = tests[0]
        key = f"{class_name}.{method_name}"
        outcome = self._sync_outcomes.get(key, Outcome.PASS)
        return self._result(
            "sync",
            class_name,
            method_name,
            outcome,
            None if outcome == Outcome.PASS else self._messages.get(key),
        )

    async def list_outstanding(self, job_id: str) -> list[str]:
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return []
        return list(dict.fromkeys(job.queue_item_id(c) for c, _ in job.pending))

    async def mark_aborted(self, work_item_ids: Sequence[str]) -> None:
        self.aborted_ids.extend(work_item_ids)
        ids = set(work_item_ids)
        for job in self._jobs.values():
            if job.status.is_terminal:
                continue
            job.pending = [(c, m) for c, m in job.pending if job.queue_item_id(c) not in ids]
            if not job.pending:
                job.status = RunStatus.ABORTED
                job.end_time = datetime.now(timezone.utc)

    async def covered_subjects(self, test_class_ids: Sequence[str]) -> list[str]:
        names = {class_id: name for name, class_id in self._class_ids.items()}
        subjects: list[str] = []
        for class_id in test_class_ids:
            for aggregate in self._coverage.get(names.get(class_id, ""), []):
                subjects.append(aggregate.subject_id)
        return list(dict.fromkeys(subjects))

    async def coverage_aggregates(self, subject_ids: Sequence[str]) -> list[CoverageAggregate]:
        wanted = set(subject_ids)
        found: dict[str, CoverageAggregate] = {}
        for aggregates in self._coverage.values():
            for aggregate in aggregates:
                if aggregate.subject_id in wanted:
                    found.setdefault(aggregate.subject_id, aggregate)
        return list(found.values())

    # =========================================================================
    # TestCatalog
    # =========================================================================

    async def list_classes(self, namespace: str | None, names: Sequence[str]) -> dict[str, str]:
        if (namespace or None) != self._namespace:
            return {}
        wanted = set(names)
        return {
            class_id: name
            for name, class_id in self._class_ids.items()
            if not wanted or name in wanted
        }

    async def list_test_methods(self, class_ids: Sequence[str]) -> ExpectedSet:
        names = {class_id: name for name, class_id in self._class_ids.items()}
        return {
            names[class_id]: set(self._classes[names[class_id]])
            for class_id in class_ids
            if class_id in names
        }

    # =========================================================================
    # Simulation
    # =========================================================================

    def _resolve_items(self, items: Sequence[TestItem]) -> list[tuple[str, str]]:
        if not items:
            return [(c, m) for c, methods in self._classes.items() for m in methods]

        names = {class_id: name for name, class_id in self._class_ids.items()}
        tests: list[tuple[str, str]] = []
        for item in items:
            class_name = item.class_name or names.get(item.class_id or "")
            if class_name not in self._classes:
                logger.warning(f"Simulated service has no test class '{class_name}'")
                continue
            methods = item.test_methods or tuple(self._classes[class_name])
            tests.extend((class_name, m) for m in methods if m in self._classes[class_name])
        return list(dict.fromkeys(tests))

    def _advance(self, job: _Job) -> None:
        if job.status.is_terminal:
            return
        if job.hanging:
            job.status = RunStatus.PROCESSING
            return

        count = len(job.pending) if self._methods_per_poll is None else self._methods_per_poll
        batch, job.pending = job.pending[:count], job.pending[count:]
        for class_name, method_name in batch:
            key = f"{class_name}.{method_name}"
            outcome = self._outcomes.get(key, Outcome.PASS)
            message = None
            if outcome != Outcome.PASS:
                message = self._messages.get(key, "Assertion failed")
            job.results.append(self._result(job.job_id, class_name, method_name, outcome, message))

        if job.pending:
            job.status = RunStatus.PROCESSING
        else:
            job.status = RunStatus.COMPLETED
            job.end_time = datetime.now(timezone.utc)

    def _result(
        self,
        job_id: str,
        class_name: str,
        method_name: str,
        outcome: Outcome,
        message: str | None,
    ) -> TestResult:
        self._result_count += 1
        return TestResult(
            id=f"res-{self._result_count}",
            job_id=job_id,
            queue_item_id=f"{job_id}-q-{class_name}",
            class_id=self._class_ids[class_name],
            namespace=self._namespace,
            class_name=class_name,
            method_name=method_name,
            outcome=outcome,
            message=message,
            stack_trace=f"Class.{class_name}.{method_name}: line 1" if message else None,
            run_time=self._run_time_ms,
            timestamp=datetime.now(timezone.utc),
        )

    def _run_record(self, job: _Job) -> RunRecord:
        classes = {c for c, _ in job.tests}
        done_classes = {r.class_name for r in job.results} - {c for c, _ in job.pending}
        return RunRecord(
            job_id=job.job_id,
            status=job.status,
            start_time=job.start_time,
            end_time=job.end_time,
            test_time=sum(r.run_time for r in job.results),
            classes_enqueued=len(classes),
            classes_completed=len(done_classes),
            methods_enqueued=len(job.tests),
            methods_completed=len(job.results),
            methods_failed=sum(1 for r in job.results if r.is_failure),
        )


__all__ = ["InMemoryRemoteExecutor"]
