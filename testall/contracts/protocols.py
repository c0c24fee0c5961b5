"""
Collaborator Protocols

Interfaces for the remote execution service, test discovery and the
pluggable pieces of the runner. The remote service is vendor-defined, so
no wire format is implied here.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from testall.contracts.core import (
    CoverageAggregate,
    ExpectedSet,
    RunRecord,
    TestItem,
    TestResult,
)


@runtime_checkable
class RemoteExecutor(Protocol):
    """
    Protocol for the remote test execution service.

    Every method is a single network call; retrying is the caller's concern.
    """

    async def submit(self, items: Sequence[TestItem], skip_coverage: bool = True) -> str:
        """
        Submit a batch of tests for asynchronous execution.

        Args:
            items: Tests to run
            skip_coverage: Whether to skip coverage collection

        Returns:
            Job identifier of the new run
        """
        ...

    async def status(self, job_id: str) -> Sequence[RunRecord]:
        """
        Query run records for a job.

        Exactly one record is expected; callers treat any other count as an error.
        """
        ...

    async def results(
        self, job_id: str, offset: int = 0, limit: int | None = None
    ) -> Sequence[TestResult]:
        """Fetch one page of results for a job, ordered stably."""
        ...

    async def run_single_synchronous(self, item: TestItem) -> TestResult | None:
        """Run one test method synchronously, outside of any batch."""
        ...

    async def list_outstanding(self, job_id: str) -> Sequence[str]:
        """Ids of work items for the job that are held, queued, preparing or processing."""
        ...

    async def mark_aborted(self, work_item_ids: Sequence[str]) -> None:
        """Mark work items as aborted."""
        ...

    async def covered_subjects(self, test_class_ids: Sequence[str]) -> Sequence[str]:
        """Ids of classes under test covered by the given test classes."""
        ...

    async def coverage_aggregates(self, subject_ids: Sequence[str]) -> Sequence[CoverageAggregate]:
        """Aggregate line coverage for the given classes under test."""
        ...


@runtime_checkable
class TestCatalog(Protocol):
    """Protocol for querying which test classes and methods exist."""

    async def list_classes(self, namespace: str | None, names: Sequence[str]) -> dict[str, str]:
        """
        Resolve classes in a namespace.

        Args:
            namespace: Namespace to search, None for unmanaged classes
            names: Class names to resolve; empty means every class

        Returns:
            Mapping of class id to class name
        """
        ...

    async def list_test_methods(self, class_ids: Sequence[str]) -> ExpectedSet:
        """Test methods declared by each class, keyed by class name."""
        ...


@runtime_checkable
class TestDiscovery(Protocol):
    """Provides the set of tests a run is expected to produce. May be slow."""

    async def class_id_name_map(self) -> dict[str, str]:
        ...

    async def expected_test_set(self) -> ExpectedSet:
        ...


@runtime_checkable
class RunAborter(Protocol):
    """Cancels in-flight work for a run."""

    async def cancel(self, job_id: str) -> list[str]:
        """Cancel the job and wait for it to drain. Returns the cancelled item ids."""
        ...


__all__ = [
    "RemoteExecutor",
    "TestCatalog",
    "TestDiscovery",
    "RunAborter",
]
