"""
Testall CLI

Entry point for the testall command-line interface.

Usage:
    testall run --url https://tests.example.com/api --class AccountServiceTest
    testall run --simulate --rerun-option limit
    testall --help
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from testall.collector.methods import CatalogTestMethodCollector
from testall.command.testall import Testall
from testall.common.logging import configure_sanitized_logging
from testall.config import TestallConfig
from testall.contracts.core import Outcome, RerunOption, RunSummary, TestResult
from testall.exceptions import TestallError
from testall.executor.http import HttpRemoteExecutor
from testall.executor.memory import InMemoryRemoteExecutor
from testall.query import QueryHelper
from testall.results.generators import (
    CSVReportGenerator,
    JSONReportGenerator,
    JUnitReportGenerator,
    RerunReportGenerator,
)
from testall.results.utils import get_test_name
from testall.runner.runner import AsyncTestRunner, RunCallbacks

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    name="testall",
    help="Testall - Run remote test batches to completion, re-running dropped and contended tests",
    no_args_is_help=True,
)

SIMULATED_CLASSES = ("AccountServiceTest", "InvoiceServiceTest")
SIMULATED_METHODS = ("test_create", "test_update", "test_delete")


@app.command("run")
def run_command(
    url: Annotated[
        str | None,
        typer.Option("--url", "-u", help="Base URL of the test execution service"),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", envvar="TESTALL_TOKEN", help="Bearer token for the service"),
    ] = None,
    namespace: Annotated[
        str | None,
        typer.Option("--namespace", "-n", help="Namespace of the test classes"),
    ] = None,
    classes: Annotated[
        list[str] | None,
        typer.Option("--class", "-c", help="Test class to run (can be repeated, default all)"),
    ] = None,
    output_dir: Annotated[
        str | None,
        typer.Option("--output-dir", "-o", help="Directory for report files"),
    ] = None,
    coverage: Annotated[
        bool,
        typer.Option("--coverage", help="Collect code coverage"),
    ] = False,
    rerun_option: Annotated[
        RerunOption | None,
        typer.Option("--rerun-option", help="Failures to re-run: pattern, limit or all"),
    ] = None,
    simulate: Annotated[
        bool,
        typer.Option("--simulate", help="Run against a simulated in-memory service"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Run tests on the remote service until every expected test has a result.

    Tests the service drops are resubmitted, and failures caused by lock
    contention are re-run one at a time. Exits 0 when no failures remain,
    1 when failures remain or the run was aborted, and 2 on error.
    """
    configure_sanitized_logging(level=logging.DEBUG if verbose else logging.INFO)

    if not simulate and not url:
        console.print("[red]Error:[/red] --url is required unless --simulate is given.")
        raise typer.Exit(2)

    overrides: dict = {"collect_coverage": coverage}
    if output_dir is not None:
        overrides["output_dir"] = output_dir
    if rerun_option is not None:
        overrides["rerun_option"] = rerun_option
    if simulate:
        overrides.update(
            poll_interval_ms=0,
            cancel_poll_interval_ms=0,
            query_initial_interval_ms=0,
        )

    asyncio.run(
        _run_async(
            url=url,
            token=token,
            namespace=namespace,
            class_names=list(classes or []),
            overrides=overrides,
            simulate=simulate,
            verbose=verbose,
        )
    )


async def _run_async(
    url: str | None,
    token: str | None,
    namespace: str | None,
    class_names: list[str],
    overrides: dict,
    simulate: bool,
    verbose: bool,
) -> None:
    """Async implementation of the run command."""
    executor: HttpRemoteExecutor | InMemoryRemoteExecutor
    try:
        config = TestallConfig.load(**overrides)

        if simulate:
            console.print("[yellow]Using a simulated test service.[/yellow]\n")
            executor = _simulated_executor(namespace, class_names)
        else:
            executor = HttpRemoteExecutor(url or "", token=token)

        query_helper = QueryHelper(config.query_retry_config)
        callbacks = RunCallbacks(
            on_run_started=lambda job_id: console.print(f"Started test run [cyan]{job_id}[/cyan]"),
            on_poll=lambda results: _print_progress(results, verbose),
        )
        runner = AsyncTestRunner.for_classes(
            executor,
            namespace,
            class_names,
            config=config,
            query_helper=query_helper,
            callbacks=callbacks,
        )
        collector = CatalogTestMethodCollector(
            executor, namespace, class_names, query_helper=query_helper
        )
        driver = Testall(
            executor,
            config,
            generators=[
                JSONReportGenerator(),
                JUnitReportGenerator(hostname=url or "simulated"),
                CSVReportGenerator(),
                RerunReportGenerator(),
            ],
            namespace=namespace,
            query_helper=query_helper,
        )

        try:
            summary = await driver.run(runner, collector)
        finally:
            if isinstance(executor, HttpRemoteExecutor):
                await executor.close()

        if summary is None:
            console.print("[yellow]Test run was aborted[/yellow]")
            raise typer.Exit(1)

        _print_summary(summary)
        raise typer.Exit(1 if summary.failed_count > 0 else 0)

    except typer.Exit:
        raise
    except TestallError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        if verbose:
            console.print_exception()
        raise typer.Exit(2)


def _simulated_executor(namespace: str | None, class_names: list[str]) -> InMemoryRemoteExecutor:
    names = class_names or list(SIMULATED_CLASSES)
    first, last = names[0], names[-1]
    return InMemoryRemoteExecutor(
        {name: list(SIMULATED_METHODS) for name in names},
        namespace=namespace,
        methods_per_poll=2,
        outcomes={f"{last}.test_delete": Outcome.FAIL},
        messages={f"{last}.test_delete": "System.DmlException: UNABLE_TO_LOCK_ROW"},
        drop={f"{first}.test_update"},
    )


def _print_progress(results: list[TestResult], verbose: bool) -> None:
    for result in results:
        if result.outcome == Outcome.PASS and not verbose:
            continue
        color = "green" if result.outcome == Outcome.PASS else "red"
        console.print(f"  [{color}]{result.outcome.value}[/{color}] {get_test_name(result)}")


def _print_summary(summary: RunSummary) -> None:
    console.print()
    table = Table(title=f"Test Run: [cyan]{summary.run.job_id}[/cyan]")
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Status", summary.run.status.value)
    table.add_row("Tests Ran", str(len(summary.results)))
    table.add_row("Passed", f"[green]{summary.passed_count}[/green]")
    table.add_row(
        "Failed",
        f"[red]{summary.failed_count}[/red]" if summary.failed_count > 0 else "0",
    )
    table.add_row("Skipped", str(summary.skipped_count))
    table.add_row("Cycles", str(len(summary.job_ids)))
    table.add_row("Re-runs", str(len(summary.reruns)))
    table.add_row("Test Time", f"{summary.run.test_time / 1000:.2f}s")
    if summary.coverage is not None:
        table.add_row("Coverage Classes", str(len(summary.coverage)))
    console.print(table)

    failures = [r for r in summary.results if r.is_failure]
    if failures:
        console.print("\n[red]Failing tests:[/red]")
        for result in failures:
            console.print(f"  {get_test_name(result)}: {escape(result.message or '')}")

    if summary.error:
        console.print(f"\n[yellow]Warning:[/yellow] {escape(summary.error)}")


@app.command()
def version() -> None:
    """Show version information."""
    from testall import __version__

    typer.echo(f"testall version {__version__}")


if __name__ == "__main__":
    app()
