"""
Results

Result storage for a run and report generation from its final summary.
"""

from testall.results.generators import (
    CSVReportGenerator,
    JSONReportGenerator,
    JUnitReportGenerator,
    OutputGenerator,
    RerunReportGenerator,
    summarize,
)
from testall.results.store import ResultStore
from testall.results.utils import get_class_name, get_test_name, group_by_outcome

__all__ = [
    "CSVReportGenerator",
    "JSONReportGenerator",
    "JUnitReportGenerator",
    "OutputGenerator",
    "RerunReportGenerator",
    "ResultStore",
    "get_class_name",
    "get_test_name",
    "group_by_outcome",
    "summarize",
]
