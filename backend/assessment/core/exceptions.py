"""
Domain exceptions for the attempt lifecycle and scoring engine.

Services raise these instead of HTTPException so they stay usable from
background tasks and scripts. The API layer maps each class to an HTTP
status in ``assessment.core.error_responses``.
"""
from typing import Optional


class AssessmentError(Exception):
    """Base class for all domain errors raised by the services."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AssessmentValidationError(AssessmentError):
    """Missing or malformed input; rejected before any state change."""


class RestrictionViolation(AssessmentError):
    """The client's platform or browser is not permitted for the test."""


class AttemptLimitExceeded(AssessmentError):
    """The student has used all allowed attempts for the test."""

    def __init__(self, message: str, max_attempts: int):
        self.max_attempts = max_attempts
        super().__init__(message)


class AccessDeniedError(AssessmentError):
    """The caller may not read or modify the requested resource."""


class NotFoundError(AssessmentError):
    """A test, question, attempt or certificate does not exist."""


class AttemptClosedError(AssessmentError):
    """The attempt is already submitted and cannot be mutated."""

    def __init__(self, message: str, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(message)


class SandboxExecutionError(AssessmentError):
    """
    A sandboxed run could not be started or completed.

    Raised inside the executor only; callers grading a batch convert it into
    a failed per-test-case result.
    """

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)


class PersistenceError(AssessmentError):
    """
    A database operation failed.

    Wraps the underlying error with the name of the operation that failed.
    Attempt and answer operations surface it as a transient failure;
    violation recording logs and drops it.
    """

    def __init__(
        self,
        operation_name: str,
        original_error: Exception,
        message: Optional[str] = None,
    ):
        self.operation_name = operation_name
        self.original_error = original_error
        super().__init__(message or f"Failed to {operation_name}: {original_error}")
