"""
Tracing Utilities.

Thin wrapper over the OpenTelemetry API. Without a configured SDK the API
hands out no-op tracers, so spans cost nothing in tests or plain CLI runs.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

F = TypeVar("F", bound=Callable[..., Any])

TRACER_NAME = "testall"


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    """Get a tracer from the globally configured provider."""
    return trace.get_tracer(name)


def record_exception(error: Exception, span: Span) -> None:
    """Mark a span as failed with the given exception."""
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


def trace_async(
    name: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Callable[[F], F]:
    """
    Decorator for tracing async functions.

    Example:
        @trace_async("testall.cycle")
        async def run_cycle(...) -> RunRecord:
            ...
    """

    def decorator(func: F) -> F:
        span_name = name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            with get_tracer().start_as_current_span(
                span_name, record_exception=False, set_status_on_exception=False
            ) as span:
                if attributes:
                    span.set_attributes(attributes)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    record_exception(e, span)
                    raise

        return wrapper  # type: ignore

    return decorator


__all__ = ["get_tracer", "record_exception", "trace_async"]
