"""Helpers for naming and grouping test results."""

from __future__ import annotations

from collections.abc import Iterable

from testall.contracts.core import Outcome, TestResult, format_test_name, resolve_namespace


def group_by_outcome(results: Iterable[TestResult]) -> dict[Outcome, list[TestResult]]:
    """Group results by outcome. Every outcome is present, possibly with an empty list."""
    grouped: dict[Outcome, list[TestResult]] = {outcome: [] for outcome in Outcome}
    for result in results:
        grouped[result.outcome].append(result)
    return grouped


def get_test_name(result: TestResult) -> str:
    """Display name of a result, ``ns__Class.method``."""
    return format_test_name(result.class_name, result.method_name, result.namespace)


def get_class_name(result: TestResult) -> str:
    """Namespaced class name of a result, ``ns__Class``."""
    return f"{resolve_namespace(result.namespace)}{result.class_name}"


__all__ = ["format_test_name", "get_class_name", "get_test_name", "group_by_outcome"]
