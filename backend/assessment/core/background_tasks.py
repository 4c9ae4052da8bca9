"""
Safe background task wrapper for consistent exception handling.

Starlette BackgroundTask exceptions propagate differently depending on the
middleware stack: with middleware present they are silently caught, but
without middleware (e.g., in TestClient) they crash the ASGI lifecycle. This
wrapper catches and logs all background task exceptions so behavior is
identical in both environments.

Sync callables (the database-bound services) are run on the threadpool so
they never block the event loop.

Usage with FastAPI BackgroundTasks::

    from assessment.core.background_tasks import safe_background_task

    background_tasks.add_task(
        safe_background_task,
        evaluate_certificate_in_background,
        attempt.id,
    )
"""

import inspect
import logging
from typing import Any, Callable

from starlette.concurrency import run_in_threadpool

from assessment.observability import metrics

logger = logging.getLogger(__name__)


async def safe_background_task(
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Execute a sync or async callable, catching and logging any exception.

    Designed to be passed directly to ``BackgroundTasks.add_task`` with the
    target as the first positional argument. All remaining positional and
    keyword arguments are forwarded to *func*.

    No retries are attempted; background tasks are fire-and-forget.
    """
    name = getattr(func, "__name__", repr(func))
    try:
        if inspect.iscoroutinefunction(func):
            await func(*args, **kwargs)
        else:
            await run_in_threadpool(func, *args, **kwargs)
    except Exception:
        logger.exception("Background task '%s' failed", name)
        try:
            metrics.record_error(error_type="BackgroundTaskFailure")
        except Exception:
            pass  # Metrics must never break the wrapper
