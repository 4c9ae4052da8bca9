"""Tests for the safe_background_task wrapper."""
import logging
from unittest.mock import AsyncMock, patch

import pytest

from assessment.core.background_tasks import safe_background_task


@pytest.mark.asyncio
async def test_async_task_runs_with_arguments():
    func = AsyncMock(return_value=True)
    await safe_background_task(func, "arg1", key="val")
    func.assert_awaited_once_with("arg1", key="val")


@pytest.mark.asyncio
async def test_sync_task_runs_on_threadpool():
    calls = []

    def sync_task(attempt_id, *, session_factory):
        calls.append((attempt_id, session_factory))

    await safe_background_task(sync_task, 12, session_factory="factory")
    assert calls == [(12, "factory")]


@pytest.mark.asyncio
async def test_exception_is_caught_and_logged(caplog):
    func = AsyncMock(side_effect=RuntimeError("boom"))
    func.__name__ = "exploding_task"

    with caplog.at_level(logging.ERROR, logger="assessment.core.background_tasks"):
        await safe_background_task(func, "arg1")

    func.assert_awaited_once_with("arg1")
    assert "Background task 'exploding_task' failed" in caplog.text
    assert "boom" in caplog.text


@pytest.mark.asyncio
async def test_sync_exception_does_not_propagate():
    def failing(attempt_id):
        raise ValueError("bad")

    # Should NOT raise
    await safe_background_task(failing, 1)


@pytest.mark.asyncio
async def test_metrics_recorded_on_failure():
    func = AsyncMock(side_effect=ValueError("bad"))
    func.__name__ = "bad_task"

    with patch("assessment.core.background_tasks.metrics") as mock_metrics:
        await safe_background_task(func)

    mock_metrics.record_error.assert_called_once_with(error_type="BackgroundTaskFailure")


@pytest.mark.asyncio
async def test_metrics_failure_does_not_break_wrapper():
    func = AsyncMock(side_effect=ValueError("bad"))
    func.__name__ = "bad_task"

    with patch("assessment.core.background_tasks.metrics") as mock_metrics:
        mock_metrics.record_error.side_effect = RuntimeError("metrics down")
        await safe_background_task(func)

    mock_metrics.record_error.assert_called_once()

