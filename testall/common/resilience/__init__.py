"""
Resilience Patterns

Retry with exponential backoff for calls to the remote service.
"""

from testall.common.resilience.retry import RetryConfig, SleepFn, retry_with_backoff

__all__ = [
    "retry_with_backoff",
    "RetryConfig",
    "SleepFn",
]
