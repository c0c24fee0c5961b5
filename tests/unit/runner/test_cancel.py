"""
Tests for run cancellation.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from testall.config import QueryRetryConfig
from testall.exceptions import CancelTimeoutError, QueryError
from testall.query import QueryHelper
from testall.runner.cancel import CancelCoordinator


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.list_outstanding = AsyncMock()
    executor.mark_aborted = AsyncMock(return_value=None)
    return executor


@pytest.fixture
def coordinator(executor, timer):
    return CancelCoordinator(
        executor,
        query_helper=QueryHelper(QueryRetryConfig(max_retries=3, initial_delay_seconds=1.0), sleep=timer.sleep),
        poll_interval_seconds=5.0,
        timeout_seconds=20.0,
        chunk_size=2,
        sleep=timer.sleep,
        clock=timer.clock,
    )


class TestCancelCoordinator:
    """Tests for CancelCoordinator."""

    @pytest.mark.asyncio
    async def test_marks_outstanding_aborted_in_chunks(self, coordinator, executor):
        executor.list_outstanding.side_effect = [["q1", "q2", "q3"], []]

        cancelled = await coordinator.cancel("job-1")

        assert cancelled == ["q1", "q2", "q3"]
        assert [c.args[0] for c in executor.mark_aborted.await_args_list] == [["q1", "q2"], ["q3"]]

    @pytest.mark.asyncio
    async def test_waits_until_drained(self, coordinator, executor, timer, caplog):
        executor.list_outstanding.side_effect = [["q1", "q2"], ["q1", "q2"], ["q2"], []]

        with caplog.at_level(logging.INFO):
            await coordinator.cancel("job-1")

        assert executor.list_outstanding.await_count == 4
        assert timer.sleeps == [5.0, 5.0]
        messages = [r.getMessage() for r in caplog.records]
        assert "Cancelling test run 'job-1'" in messages
        assert "Waiting for test run 'job-1' to cancel... 2 tests queued" in messages
        assert "Waiting for test run 'job-1' to cancel... 1 tests queued" in messages
        assert "Test run 'job-1' has been cancelled" in messages

    @pytest.mark.asyncio
    async def test_nothing_outstanding(self, coordinator, executor):
        executor.list_outstanding.return_value = []

        assert await coordinator.cancel("job-1") == []
        executor.mark_aborted.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_is_cancel_timeout(self, coordinator, executor):
        executor.list_outstanding.return_value = ["q1"]

        with pytest.raises(CancelTimeoutError) as exc_info:
            await coordinator.cancel("job-1")

        assert exc_info.value.job_id == "job-1"
        assert exc_info.value.outstanding == 1
        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_timeout_recorded_on_cancel_span(self, coordinator, executor):
        executor.list_outstanding.return_value = ["q1"]
        tracer = MagicMock()
        span = tracer.start_as_current_span.return_value.__enter__.return_value

        with patch("testall.common.telemetry.get_tracer", return_value=tracer):
            with pytest.raises(CancelTimeoutError) as exc_info:
                await coordinator.cancel("job-1")

        assert tracer.start_as_current_span.call_args.args[0] == "testall.runner.cancel"
        span.record_exception.assert_called_once_with(exc_info.value)

    @pytest.mark.asyncio
    async def test_mark_aborted_uses_reduced_retries(self, coordinator, executor):
        executor.list_outstanding.return_value = ["q1"]
        executor.mark_aborted.side_effect = ConnectionError("refused")

        with pytest.raises(QueryError) as exc_info:
            await coordinator.cancel("job-1")

        assert exc_info.value.stage == "mark aborted"
        assert executor.mark_aborted.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_outstanding_query_failure_is_retried(self, coordinator, executor):
        executor.list_outstanding.side_effect = [["q1"], ConnectionError("blip"), []]

        assert await coordinator.cancel("job-1") == ["q1"]

    def test_from_config(self, executor, config):
        coordinator = CancelCoordinator.from_config(executor, config)

        assert coordinator._poll_interval == config.cancel_poll_interval_seconds
        assert coordinator._timeout == config.cancel_timeout_seconds
        assert coordinator._chunk_size == config.mark_aborted_chunk_size
