"""
Test Runner

Submission, polling, hang detection and cancellation for one test batch.
"""

from testall.runner.cancel import CancelCoordinator
from testall.runner.poll import PollTimeoutError, poll
from testall.runner.runner import (
    AsyncTestRunner,
    CancellationToken,
    RunCallbacks,
    TestRunner,
    TestRunnerResult,
)
from testall.runner.stats import RunStats

__all__ = [
    "AsyncTestRunner",
    "CancelCoordinator",
    "CancellationToken",
    "PollTimeoutError",
    "RunCallbacks",
    "RunStats",
    "TestRunner",
    "TestRunnerResult",
    "poll",
]
