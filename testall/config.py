"""
Testall Configuration

Configuration settings using pydantic-settings for environment variable support.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from testall.contracts.core import RerunOption
from testall.exceptions import ConfigurationError


@dataclass(frozen=True)
class QueryRetryConfig:
    """Retry policy applied to every remote query."""

    max_retries: int = 3
    initial_delay_seconds: float = 30.0


class TestallConfig(BaseSettings):
    """
    Configuration for a Testall invocation.

    Reads from environment variables with TESTALL_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="TESTALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Run polling
    poll_interval_ms: int = Field(
        default=30000,
        ge=0,
        description="Time to wait between checking test run status",
    )
    run_timeout_mins: float = Field(
        default=120,
        ge=0,
        description="Maximum time for a single test run to execute",
    )
    max_run_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum number of submissions of a hanging test run",
    )
    hang_stall_threshold: int = Field(
        default=60,
        ge=1,
        description="Polls without test progress before a hang is assumed",
    )

    # Cancellation
    cancel_poll_interval_ms: int = Field(
        default=30000,
        ge=0,
        description="Time between polls for cancelled work items",
    )
    cancel_timeout_mins: float = Field(
        default=10,
        ge=0,
        description="Timeout when waiting for cancelled work items to drain",
    )
    mark_aborted_chunk_size: int = Field(
        default=1000,
        ge=1,
        description="Work items marked aborted per request",
    )

    # Re-running
    max_errors_for_rerun: int = Field(
        default=10,
        ge=0,
        description="Don't fill in missing tests if more genuine failures than this",
    )
    rerun_option: RerunOption = Field(
        default=RerunOption.PATTERN,
        description="Which failures get a sequential re-run (pattern, limit, all)",
    )
    rerun_patterns_file: str = Field(
        default=".testRerun",
        description="Name of the rerun patterns file, searched for upward from the working directory",
    )

    # Queries
    max_query_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum number of times to retry a failed query",
    )
    query_initial_interval_ms: int = Field(
        default=30000,
        ge=0,
        description="First delay after a query fails, doubles on every retry",
    )
    results_page_size: int = Field(
        default=2000,
        ge=1,
        description="Row cap for a single results query",
    )
    coverage_chunk_size: int = Field(
        default=500,
        ge=1,
        description="Ids per coverage query",
    )

    # Coverage
    collect_coverage: bool = Field(
        default=False,
        description="Collect code coverage data",
    )
    disable_coverage_report: bool = Field(
        default=False,
        description="Skip gathering the coverage report even when collecting coverage",
    )

    # Output
    output_dir: str = Field(
        default="",
        description="Directory for generated reports",
    )
    output_file_name: str = Field(
        default="test-result",
        description="File name base for generated reports",
    )

    @classmethod
    def load(cls, **overrides: Any) -> TestallConfig:
        """
        Build a configuration, reporting invalid values as ConfigurationError.

        Args:
            **overrides: Values that take precedence over the environment

        Raises:
            ConfigurationError: If any value fails validation
        """
        try:
            return cls(**overrides)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "config"
            raise ConfigurationError(field, first.get("msg", str(e))) from e

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def run_timeout_seconds(self) -> float:
        return self.run_timeout_mins * 60

    @property
    def cancel_poll_interval_seconds(self) -> float:
        return self.cancel_poll_interval_ms / 1000

    @property
    def cancel_timeout_seconds(self) -> float:
        return self.cancel_timeout_mins * 60

    @property
    def query_retry_config(self) -> QueryRetryConfig:
        return QueryRetryConfig(
            max_retries=self.max_query_retries,
            initial_delay_seconds=self.query_initial_interval_ms / 1000,
        )


__all__ = ["QueryRetryConfig", "TestallConfig"]
