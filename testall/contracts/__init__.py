"""
Testall Contracts

Data models and collaborator protocols shared across the package.
"""

from testall.contracts.core import (
    CoverageAggregate,
    ExpectedSet,
    Outcome,
    RerunOption,
    RunRecord,
    RunStatus,
    RunSummary,
    TestCaseId,
    TestItem,
    TestRerun,
    TestResult,
    format_test_name,
)
from testall.contracts.protocols import (
    RemoteExecutor,
    RunAborter,
    TestCatalog,
    TestDiscovery,
)

__all__ = [
    # Models
    "CoverageAggregate",
    "ExpectedSet",
    "Outcome",
    "RerunOption",
    "RunRecord",
    "RunStatus",
    "RunSummary",
    "TestCaseId",
    "TestItem",
    "TestRerun",
    "TestResult",
    "format_test_name",
    # Protocols
    "RemoteExecutor",
    "RunAborter",
    "TestCatalog",
    "TestDiscovery",
]
