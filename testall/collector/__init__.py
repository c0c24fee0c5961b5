"""
Collectors

Test discovery, result fetching and failure classification.
"""

from testall.collector.matcher import DEFAULT_RERUN_PATTERNS, ResultClassifier
from testall.collector.methods import CatalogTestMethodCollector, TestItemTestMethodCollector
from testall.collector.results import ResultAggregator, ResultGroups, group_records

__all__ = [
    "DEFAULT_RERUN_PATTERNS",
    "ResultClassifier",
    "CatalogTestMethodCollector",
    "TestItemTestMethodCollector",
    "ResultAggregator",
    "ResultGroups",
    "group_records",
]
