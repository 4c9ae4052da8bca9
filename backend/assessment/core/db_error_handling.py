"""
Database error handling utilities.

Centralizes the pattern of:
1. Rolling back the session on error
2. Logging the error with context
3. Raising ``PersistenceError`` so the API layer answers with a transient
   failure instead of a raw 500

Domain errors raised inside the block (not found, closed attempt, ...) are
re-raised untouched after the rollback.

Usage:
    from assessment.core.db_error_handling import handle_db_error

    with handle_db_error(db, "submit attempt"):
        attempt.status = AttemptStatus.SUBMITTED
        db.commit()
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from assessment.core.exceptions import AssessmentError, PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def handle_db_error(
    db: Session,
    operation_name: str,
    *,
    log_level: int = logging.ERROR,
) -> Generator[None, None, None]:
    """Context manager for handling database errors consistently.

    Args:
        db: The SQLAlchemy session to rollback on error.
        operation_name: Human-readable name of the operation for error messages
            and logging (e.g., "start attempt", "record judging result").
        log_level: Logging level for SQLAlchemy failures. Defaults to ERROR.

    Raises:
        PersistenceError: On any SQLAlchemyError, with the session rolled back.
        AssessmentError: Domain errors propagate unchanged (after rollback).
    """
    try:
        yield
    except AssessmentError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.log(
            log_level,
            f"Database error during {operation_name}: {e}",
            exc_info=True,
        )
        raise PersistenceError(operation_name, e) from e

