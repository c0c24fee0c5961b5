"""
Pytest configuration for unit tests.

Provides a fake timer so polling and retry tests run instantly, and
factories for the result models used throughout.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timezone

import pytest

from testall.config import TestallConfig
from testall.contracts.core import Outcome, RunRecord, RunStatus, TestResult


class FakeTimer:
    """Clock and sleep pair where sleeping advances the clock instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def config() -> TestallConfig:
    """Defaults, with small limits so tests stay short."""
    return TestallConfig(
        poll_interval_ms=1000,
        run_timeout_mins=1,
        cancel_poll_interval_ms=1000,
        cancel_timeout_mins=1,
        max_run_retries=3,
        hang_stall_threshold=3,
        max_errors_for_rerun=10,
        max_query_retries=2,
        query_initial_interval_ms=100,
    )


@pytest.fixture
def make_result():
    """Factory for TestResult with sequential ids."""
    counter = itertools.count(1)

    def _make(
        class_name: str = "FooTest",
        method_name: str = "m1",
        outcome: Outcome = Outcome.PASS,
        message: str | None = None,
        job_id: str = "job-1",
        run_time: int = 10,
        namespace: str | None = None,
        stack_trace: str | None = None,
    ) -> TestResult:
        n = next(counter)
        return TestResult(
            id=f"res-{n}",
            job_id=job_id,
            queue_item_id=f"q-{class_name}",
            class_id=f"cls-{class_name}",
            namespace=namespace,
            class_name=class_name,
            method_name=method_name,
            outcome=outcome,
            message=message,
            stack_trace=stack_trace,
            run_time=run_time,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def make_run():
    """Factory for RunRecord."""

    def _make(
        job_id: str = "job-1",
        status: RunStatus = RunStatus.COMPLETED,
        methods_completed: int = 0,
        methods_enqueued: int = 0,
        methods_failed: int = 0,
        test_time: int = 0,
        classes_enqueued: int = 0,
        classes_completed: int = 0,
    ) -> RunRecord:
        return RunRecord(
            job_id=job_id,
            status=status,
            start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
            methods_completed=methods_completed,
            methods_enqueued=methods_enqueued,
            methods_failed=methods_failed,
            test_time=test_time,
            classes_enqueued=classes_enqueued,
            classes_completed=classes_completed,
        )

    return _make
