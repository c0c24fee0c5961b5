"""
Output Generators

Write a finished run summary to report files.

Usage:
    from testall.results.generators import (
        CSVReportGenerator,
        JSONReportGenerator,
        JUnitReportGenerator,
    )

    # Write test-result.json
    path = await JSONReportGenerator().generate(summary, "reports", "test-result")

    # Write test-result.xml for CI test reporting
    path = await JUnitReportGenerator().generate(summary, "reports", "test-result")

    # Write test-result.csv for analysis
    path = await CSVReportGenerator().generate(summary, "reports", "test-result")
"""

from __future__ import annotations

import csv
import json
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from testall.contracts.core import Outcome, RunSummary, TestRerun, TestResult
from testall.results.utils import get_test_name

# =============================================================================
# Summary
# =============================================================================


@dataclass
class ReportSummary:
    """Headline numbers of a run, shared by every report."""

    outcome: str = "Passed"
    tests_ran: int = 0
    passing: int = 0
    failing: int = 0
    skipped: int = 0
    pass_rate: float = 0.0
    fail_rate: float = 0.0
    test_start_time: str | None = None
    test_execution_time_ms: int = 0
    test_total_time_ms: int = 0
    command_time_ms: int = 0
    test_run_id: str = ""
    job_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["pass_rate"] = round(self.pass_rate, 4)
        data["fail_rate"] = round(self.fail_rate, 4)
        data["job_ids"] = list(self.job_ids)
        return data


def summarize(summary: RunSummary, now: datetime | None = None) -> ReportSummary:
    """
    Compute headline numbers for a run summary.

    Rates exclude skipped tests.
    """
    now = now or datetime.now(timezone.utc)
    results = summary.results
    total = len(results)
    failing = summary.failed_count
    skipped = summary.skipped_count
    passing = total - failing - skipped
    counted = total - skipped

    return ReportSummary(
        outcome="Failed" if failing > 0 else "Passed",
        tests_ran=total,
        passing=passing,
        failing=failing,
        skipped=skipped,
        pass_rate=passing / counted if counted else 0.0,
        fail_rate=failing / counted if counted else 0.0,
        test_start_time=summary.run.start_time.isoformat() if summary.run.start_time else None,
        test_execution_time_ms=sum(r.run_time for r in results),
        test_total_time_ms=summary.run.test_time,
        command_time_ms=int((now - summary.start_time).total_seconds() * 1000),
        test_run_id=summary.run.job_id,
        job_ids=summary.job_ids,
    )


def sorted_results(results: tuple[TestResult, ...] | list[TestResult]) -> list[TestResult]:
    """Results ordered by case-insensitive display name."""
    return sorted(results, key=lambda r: get_test_name(r).upper())


# =============================================================================
# Base Generator
# =============================================================================


class OutputGenerator(ABC):
    """Base class for report generators."""

    @abstractmethod
    async def generate(
        self,
        summary: RunSummary,
        output_dir: str | Path,
        file_name: str,
    ) -> Path:
        """Write a report for the summary and return its path."""
        ...

    @staticmethod
    def _output_path(output_dir: str | Path, file_name: str) -> Path:
        path = Path(output_dir or ".") / file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


# =============================================================================
# JSON Report
# =============================================================================


class JSONReportGenerator(OutputGenerator):
    """Write the summary, every test result and any coverage to ``<name>.json``."""

    def __init__(self, indent: int = 2):
        self.indent = indent

    async def generate(
        self,
        summary: RunSummary,
        output_dir: str | Path,
        file_name: str,
    ) -> Path:
        output_path = self._output_path(output_dir, f"{file_name}.json")

        data: dict[str, Any] = {
            "summary": summarize(summary).to_dict(),
            "tests": [self._result_to_dict(r) for r in sorted_results(summary.results)],
        }
        if summary.coverage is not None:
            data["coverage"] = [c.model_dump(mode="json") for c in summary.coverage]
        if summary.error:
            data["error"] = summary.error

        with open(output_path, "w") as f:
            json.dump(data, f, indent=self.indent, default=str)
        return output_path

    def _result_to_dict(self, result: TestResult) -> dict[str, Any]:
        success = result.outcome == Outcome.PASS
        return {
            "id": result.id,
            "queue_item_id": result.queue_item_id,
            "job_id": result.job_id,
            "full_name": get_test_name(result),
            "class_id": result.class_id,
            "class_name": result.class_name,
            "namespace": result.namespace or "",
            "method_name": result.method_name,
            "outcome": result.outcome.value,
            # Promoted results keep their original failure text, which is not reported
            "message": None if success else result.message,
            "stack_trace": None if success else result.stack_trace,
            "run_time": result.run_time,
            "timestamp": result.timestamp.isoformat() if result.timestamp else None,
        }


# =============================================================================
# CSV Report
# =============================================================================


CSV_HEADERS = [
    "full_name",
    "class_name",
    "method_name",
    "outcome",
    "run_time",
    "job_id",
    "timestamp",
    "message",
]


class CSVReportGenerator(OutputGenerator):
    """Write one row per test result to ``<name>.csv``."""

    async def generate(
        self,
        summary: RunSummary,
        output_dir: str | Path,
        file_name: str,
    ) -> Path:
        output_path = self._output_path(output_dir, f"{file_name}.csv")

        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_HEADERS, extrasaction="ignore")
            writer.writeheader()

            for result in sorted_results(summary.results):
                writer.writerow(
                    {
                        "full_name": get_test_name(result),
                        "class_name": result.class_name,
                        "method_name": result.method_name,
                        "outcome": result.outcome.value,
                        "run_time": result.run_time,
                        "job_id": result.job_id,
                        "timestamp": result.timestamp.isoformat() if result.timestamp else "",
                        "message": "" if result.outcome == Outcome.PASS else result.message or "",
                    }
                )
        return output_path


# =============================================================================
# JUnit Report
# =============================================================================


def ms_to_seconds(ms: int) -> float:
    return round(ms / 1000, 2)


class JUnitReportGenerator(OutputGenerator):
    """
    Write a JUnit-style ``<name>.xml`` report.

    One ``testsuite`` carries the headline numbers as properties, and each
    result becomes a ``testcase``. Results that did not pass or skip get a
    ``failure`` element holding the message and stack trace.
    """

    def __init__(self, suite_name: str = "testall", hostname: str = ""):
        self.suite_name = suite_name
        self.hostname = hostname

    async def generate(
        self,
        summary: RunSummary,
        output_dir: str | Path,
        file_name: str,
    ) -> Path:
        output_path = self._output_path(output_dir, f"{file_name}.xml")

        tree = ET.ElementTree(self.build(summary))
        ET.indent(tree, space="    ")
        tree.write(output_path, encoding="UTF-8", xml_declaration=True)
        return output_path

    def build(self, summary: RunSummary) -> ET.Element:
        """Build the ``testsuites`` element for a run summary."""
        report = summarize(summary)

        root = ET.Element("testsuites")
        suite = ET.SubElement(
            root,
            "testsuite",
            {
                "name": self.suite_name,
                "timestamp": report.test_start_time or "",
                "hostname": self.hostname,
                "tests": str(report.tests_ran),
                "failures": str(report.failing),
                "errors": "0",
                "skipped": str(report.skipped),
                "time": str(ms_to_seconds(report.test_execution_time_ms)),
            },
        )

        properties = ET.SubElement(suite, "properties")
        for name, value in (
            ("outcome", report.outcome),
            ("testsRan", report.tests_ran),
            ("passing", report.passing),
            ("failing", report.failing),
            ("skipped", report.skipped),
            ("passRate", f"{report.pass_rate * 100:.2f}%"),
            ("failRate", f"{report.fail_rate * 100:.2f}%"),
            ("testStartTime", report.test_start_time or ""),
            ("testExecutionTime", f"{ms_to_seconds(report.test_execution_time_ms)} s"),
            ("testTotalTime", f"{ms_to_seconds(report.test_total_time_ms)} s"),
            ("commandTime", f"{ms_to_seconds(report.command_time_ms)} s"),
            ("hostname", self.hostname),
            ("testRunId", report.test_run_id),
        ):
            ET.SubElement(properties, "property", {"name": name, "value": str(value)})

        for result in sorted_results(summary.results):
            classname = result.class_name
            if result.namespace:
                classname = f"{result.namespace}.{classname}"
            case = ET.SubElement(
                suite,
                "testcase",
                {
                    "name": result.method_name,
                    "classname": classname,
                    "time": str(ms_to_seconds(result.run_time)),
                },
            )
            if result.outcome == Outcome.SKIP:
                ET.SubElement(case, "skipped")
            elif result.outcome != Outcome.PASS:
                failure = ET.SubElement(
                    case, "failure", {"message": result.message or "No failure message!"}
                )
                failure.text = result.stack_trace or None

        return root


# =============================================================================
# Rerun Report
# =============================================================================


class RerunReportGenerator(OutputGenerator):
    """Write the before and after state of each sequential re-run to ``<name>-reruns.json``."""

    def __init__(self, indent: int = 2):
        self.indent = indent

    async def generate(
        self,
        summary: RunSummary,
        output_dir: str | Path,
        file_name: str,
    ) -> Path:
        output_path = self._output_path(output_dir, f"{file_name}-reruns.json")

        with open(output_path, "w") as f:
            json.dump(
                [self._rerun_to_dict(r) for r in summary.reruns],
                f,
                indent=self.indent,
                default=str,
            )
        return output_path

    def _rerun_to_dict(self, rerun: TestRerun) -> dict[str, Any]:
        return {
            "name": rerun.name,
            "before": rerun.before.model_dump(mode="json"),
            "after": rerun.after.model_dump(mode="json"),
        }


__all__ = [
    "CSVReportGenerator",
    "JSONReportGenerator",
    "JUnitReportGenerator",
    "OutputGenerator",
    "ReportSummary",
    "RerunReportGenerator",
    "sorted_results",
    "summarize",
]
