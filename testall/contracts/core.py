"""
Testall Contracts - Pydantic v2 Schemas

Data contracts shared by the runner, the driver, the collectors and the
output generators. Models are frozen; updates produce new instances via
``model_copy`` or the explicit merge helpers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


def _now_utc() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def format_test_name(class_name: str, method_name: str, namespace: str | None = None) -> str:
    """Format a display name, prefixing the namespace as ``ns__Class.method``."""
    return f"{resolve_namespace(namespace)}{class_name}.{method_name}"


def resolve_namespace(namespace: str | None) -> str:
    """Return the ``ns__`` prefix for a namespace, or an empty string."""
    if not namespace:
        return ""
    return namespace if namespace.endswith("__") else f"{namespace}__"


# =============================================================================
# Enumerations
# =============================================================================


class Outcome(str, Enum):
    """Outcome of a single test method execution."""

    PASS = "Pass"
    FAIL = "Fail"
    COMPILE_FAIL = "CompileFail"
    SKIP = "Skip"


class RunStatus(str, Enum):
    """Status of a submitted test run."""

    QUEUED = "Queued"
    PREPARING = "Preparing"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.ABORTED)


class RerunOption(str, Enum):
    """Which failures are given a sequential re-run."""

    PATTERN = "pattern"  # Only failures matching a contention pattern
    LIMIT = "limit"  # Pattern matches, plus genuine failures while under the error limit
    ALL = "all"  # Every failure


# =============================================================================
# Test Identity
# =============================================================================


class TestCaseId(BaseModel):
    """
    The addressable unit of work.

    Identity is the (namespace, class_name, method_name) triple. Results in a
    single run share one namespace, so the store key leaves it out.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str | None = Field(default=None, description="Grouping-only namespace")
    class_name: str = Field(..., min_length=1)
    method_name: str = Field(..., min_length=1)

    @property
    def key(self) -> str:
        """Store key, ``Class.method``."""
        return f"{self.class_name}.{self.method_name}"

    @property
    def full_name(self) -> str:
        """Display name including the namespace prefix."""
        return format_test_name(self.class_name, self.method_name, self.namespace)


class TestItem(BaseModel):
    """
    A submission entry: one class, optionally restricted to some methods.

    An empty ``test_methods`` tuple means every test method in the class.
    """

    model_config = ConfigDict(frozen=True)

    class_name: str | None = None
    class_id: str | None = None
    namespace: str | None = None
    test_methods: tuple[str, ...] = Field(default_factory=tuple)


ExpectedSet = dict[str, set[str]]
"""Mapping of class name to the method names expected to run."""


# =============================================================================
# Results
# =============================================================================


class TestResult(BaseModel):
    """
    Result of one test method, as produced by the remote service.

    ``run_time`` is in milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    job_id: str
    queue_item_id: str | None = None
    class_id: str | None = None
    namespace: str | None = None
    class_name: str
    method_name: str
    outcome: Outcome
    message: str | None = None
    stack_trace: str | None = None
    run_time: int = Field(default=0, ge=0)
    timestamp: datetime | None = None

    @property
    def test_id(self) -> TestCaseId:
        return TestCaseId(
            namespace=self.namespace,
            class_name=self.class_name,
            method_name=self.method_name,
        )

    @property
    def key(self) -> str:
        return self.test_id.key

    @property
    def full_name(self) -> str:
        return self.test_id.full_name

    @property
    def is_failure(self) -> bool:
        return self.outcome in (Outcome.FAIL, Outcome.COMPILE_FAIL)


class TestRerun(BaseModel):
    """Pairs a result with the outcome of its synchronous re-run."""

    model_config = ConfigDict(frozen=True)

    name: str
    before: TestResult
    after: TestResult


class RunRecord(BaseModel):
    """
    Aggregate counters for one submission cycle.

    ``test_time`` is in milliseconds. Counters are monotonically
    non-decreasing while a cycle is in flight.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: RunStatus = RunStatus.QUEUED
    start_time: datetime | None = None
    end_time: datetime | None = None
    test_time: int = Field(default=0, ge=0)
    classes_enqueued: int = Field(default=0, ge=0)
    classes_completed: int = Field(default=0, ge=0)
    methods_enqueued: int = Field(default=0, ge=0)
    methods_completed: int = Field(default=0, ge=0)
    methods_failed: int = Field(default=0, ge=0)

    def merge(self, other: RunRecord) -> RunRecord:
        """
        Fold a later cycle into this aggregate.

        Counters are summed; status and end time come from ``other``.
        The job id and start time of the first cycle are kept.
        """
        return self.model_copy(
            update={
                "status": other.status,
                "end_time": other.end_time or self.end_time,
                "test_time": self.test_time + other.test_time,
                "classes_enqueued": self.classes_enqueued + other.classes_enqueued,
                "classes_completed": self.classes_completed + other.classes_completed,
                "methods_enqueued": self.methods_enqueued + other.methods_enqueued,
                "methods_completed": self.methods_completed + other.methods_completed,
                "methods_failed": self.methods_failed + other.methods_failed,
            }
        )


# =============================================================================
# Coverage
# =============================================================================


class CoverageAggregate(BaseModel):
    """Line coverage of one class or trigger under test."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    subject_name: str
    lines_covered: int = Field(default=0, ge=0)
    lines_uncovered: int = Field(default=0, ge=0)
    covered_lines: tuple[int, ...] = Field(default_factory=tuple)
    uncovered_lines: tuple[int, ...] = Field(default_factory=tuple)

    @computed_field
    @property
    def coverage_pct(self) -> float:
        """Percentage of lines covered."""
        total = self.lines_covered + self.lines_uncovered
        if total == 0:
            return 0.0
        return (self.lines_covered / total) * 100


# =============================================================================
# Summary
# =============================================================================


class RunSummary(BaseModel):
    """Final snapshot handed to output generators."""

    model_config = ConfigDict(frozen=True)

    start_time: datetime = Field(default_factory=_now_utc)
    results: tuple[TestResult, ...] = Field(default_factory=tuple)
    run: RunRecord
    job_ids: tuple[str, ...] = Field(default_factory=tuple)
    reruns: tuple[TestRerun, ...] = Field(default_factory=tuple)
    coverage: tuple[CoverageAggregate, ...] | None = None
    error: str | None = None

    @computed_field
    @property
    def has_reruns(self) -> bool:
        """True when tests were re-run sequentially or resubmitted."""
        return bool(self.reruns) or len(self.job_ids) > 1

    @computed_field
    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == Outcome.PASS)

    @computed_field
    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.is_failure)

    @computed_field
    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == Outcome.SKIP)
