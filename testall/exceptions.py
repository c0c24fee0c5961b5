"""
Testall Exception Hierarchy

Structured exception types for run orchestration. All testall-specific
exceptions inherit from TestallError.

Usage:
    from testall.exceptions import QueryError, TestTimeoutError

    try:
        summary = await Testall.run(...)
    except TestTimeoutError as e:
        logger.error(f"Test run timed out: {e}")
"""

from __future__ import annotations


class TestallError(Exception):
    """
    Base exception for all Testall errors.

    Attributes:
        message: Human-readable error description
        code: Optional machine-readable error code for programmatic handling
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# General Errors
# =============================================================================


class GeneralError(TestallError):
    """Invariant violation such as a wrong record count or unknown identity."""

    def __init__(self, message: str, code: str = "GENERAL") -> None:
        super().__init__(message, code=code)


class ConfigurationError(GeneralError):
    """Configuration value is invalid or malformed."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(
            f"Invalid configuration for '{field}': {reason}",
            code="CONFIG_INVALID",
        )
        self.field = field
        self.reason = reason


# =============================================================================
# Query Errors
# =============================================================================


class QueryError(TestallError):
    """Remote query or network failure, possibly after exhausting retries."""

    def __init__(self, stage: str, reason: str) -> None:
        super().__init__(
            f"Query failed for '{stage}': {reason}",
            code="QUERY",
        )
        self.stage = stage
        self.reason = reason


# =============================================================================
# Timeout Errors
# =============================================================================


class TestTimeoutError(TestallError, TimeoutError):
    """Base class for poll timeouts. Never retried automatically."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="TIMEOUT")


class RunTimeoutError(TestTimeoutError):
    """A test run exceeded the maximum allowed run time."""

    def __init__(self, job_id: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Test run '{job_id}' has exceeded test runner max allowed run time "
            f"of {timeout_seconds:g} seconds"
        )
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds


class CancelTimeoutError(TestTimeoutError):
    """Outstanding work for a cancelled run did not drain in time."""

    def __init__(self, job_id: str, timeout_seconds: float, outstanding: int) -> None:
        super().__init__(
            f"Test run '{job_id}' did not cancel within {timeout_seconds:g} seconds, "
            f"{outstanding} tests still queued"
        )
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        self.outstanding = outstanding


# =============================================================================
# Retry Errors
# =============================================================================


class RetryExhaustedError(TestallError):
    """A hanging test run was resubmitted too many times."""

    def __init__(self, max_retries: int) -> None:
        super().__init__(
            f"Max number of test run retries reached, max allowed retries: {max_retries}",
            code="RETRY_EXHAUSTED",
        )
        self.max_retries = max_retries


__all__ = [
    "TestallError",
    "GeneralError",
    "ConfigurationError",
    "QueryError",
    "TestTimeoutError",
    "RunTimeoutError",
    "CancelTimeoutError",
    "RetryExhaustedError",
]
