"""
Graceful failure utilities.

Reusable context manager for non-critical operations that must not block
the main execution flow:
1. Attempt the operation
2. Log any exception with context
3. Continue without raising

This is distinct from ``db_error_handling.py``, which handles critical
errors that require rollback and an error response.

Usage:
    from assessment.core.graceful_failure import graceful_failure

    with graceful_failure("record violation", logger, context={"attempt_id": 7}):
        tracker.record(...)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from assessment.observability import metrics


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager for operations whose failure is acceptable.

    Unlike ``handle_db_error``, this does NOT raise, roll back a session or
    stop execution. Callers that hold a session must roll it back themselves.

    Args:
        operation_name: Human-readable name of the operation for logging
            (e.g., "record violation", "evaluate certificate").
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include exception traceback in log.
        context: Optional dictionary of additional context to include in the
            log message (e.g., {"attempt_id": 123}).
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)

        try:
            metrics.record_error(error_type="GracefulFailure")
        except Exception:
            pass  # Metrics recording should not break graceful failure handling

