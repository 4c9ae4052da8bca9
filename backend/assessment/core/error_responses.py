"""
Standardized error response messages and domain-error mapping.

All user-facing messages live in ``ErrorMessages`` so wording stays
consistent between services and endpoints.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Include relevant IDs in parentheses when helpful for debugging: "(ID: 123)"
- Use "Please try again later." for transient server errors

Usage:
    from assessment.core.error_responses import ErrorMessages
    from assessment.core.exceptions import NotFoundError

    raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
"""

from typing import Dict, NoReturn, Type

from fastapi import HTTPException, status

from assessment.core.exceptions import (
    AccessDeniedError,
    AssessmentError,
    AssessmentValidationError,
    AttemptClosedError,
    AttemptLimitExceeded,
    NotFoundError,
    PersistenceError,
    RestrictionViolation,
    SandboxExecutionError,
)


class ErrorMessages:
    """Centralized error message constants and templates.

    Naming Convention:
    - Constants: SCREAMING_SNAKE_CASE for static messages
    - Methods: snake_case for templates that accept parameters
    """

    # ==========================================================================
    # Authentication / Authorization Errors (401/403)
    # ==========================================================================
    INVALID_TOKEN = "Invalid authentication token."
    INVALID_TOKEN_PAYLOAD = "Invalid token payload."
    USER_NOT_FOUND_AUTH = "User not found."
    ROLE_NOT_PERMITTED = "Your role is not permitted to perform this action."
    REVIEW_NOT_AVAILABLE = "Review is not available for this test."
    OWN_ATTEMPTS_ONLY = "You can only view your own test attempts."
    NOT_TEST_OWNER = "Access denied. You can only view attempts for tests you created."

    # ==========================================================================
    # Not Found Errors (404)
    # ==========================================================================
    TEST_NOT_FOUND = "Test not found."
    ATTEMPT_NOT_FOUND = "Attempt not found."
    CERTIFICATE_NOT_FOUND = "Certificate not found or inactive."

    # ==========================================================================
    # Bad Request Errors (400)
    # ==========================================================================
    MISSING_ANSWER = "An answer is required for single-choice questions."
    MISSING_CODE = "A code submission is required for code questions."
    NOT_A_CODE_QUESTION = "Not a code question."
    EMPTY_CODE = "Code is required."
    EMPTY_VIOLATION_BATCH = "At least one violation is required."

    # ==========================================================================
    # Server Errors (5xx)
    # ==========================================================================
    TRANSIENT_FAILURE = "The service is temporarily unavailable. Please try again later."
    INTERNAL_ERROR = "Internal server error"
    SANDBOX_UNAVAILABLE = (
        "Code execution is unavailable: no sandbox isolation backend is installed."
    )

    # ==========================================================================
    # Template Methods for Dynamic Messages
    # ==========================================================================
    @staticmethod
    def platform_restricted(restriction: str) -> str:
        return f"This test is restricted to {restriction.upper()} only."

    @staticmethod
    def browser_restricted(allowed: list) -> str:
        return f"This test only allows: {', '.join(allowed)}."

    @staticmethod
    def max_attempts_reached(max_attempts: int) -> str:
        return (
            f"You have reached the maximum number of attempts ({max_attempts}) "
            "for this test."
        )

    @staticmethod
    def attempt_already_submitted(attempt_id: int) -> str:
        """Message for mutations against a finalized attempt."""
        return (
            f"Attempt (ID: {attempt_id}) is already submitted. "
            "Only in-progress attempts can be modified."
        )

    @staticmethod
    def question_not_found(question_id: int) -> str:
        return f"Question {question_id} not found."

    @staticmethod
    def question_not_in_attempt(question_id: int, attempt_id: int) -> str:
        return f"Question {question_id} is not part of attempt (ID: {attempt_id})."

    @staticmethod
    def question_type_mismatch(question_id: int, question_type: str) -> str:
        return (
            f"Question {question_id} is a {question_type} question; "
            "the submitted answer does not match its type."
        )

    @staticmethod
    def invalid_judging_counts(passed_count: int, total: int) -> str:
        return (
            f"passed_count ({passed_count}) cannot exceed "
            f"total_test_cases ({total})."
        )

    @staticmethod
    def too_many_test_cases(limit: int) -> str:
        return f"At most {limit} test cases can be run per request."

    @staticmethod
    def unsupported_language(language: str) -> str:
        return f"Unsupported language: {language}."


# Domain error -> HTTP status. Order matters: first isinstance match wins.
DOMAIN_ERROR_STATUS: Dict[Type[AssessmentError], int] = {
    AssessmentValidationError: status.HTTP_400_BAD_REQUEST,
    RestrictionViolation: status.HTTP_403_FORBIDDEN,
    AttemptLimitExceeded: status.HTTP_403_FORBIDDEN,
    AccessDeniedError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AttemptClosedError: status.HTTP_409_CONFLICT,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
    SandboxExecutionError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for_domain_error(exc: AssessmentError) -> int:
    """Return the HTTP status code for a domain error (500 if unmapped)."""
    for error_type, status_code in DOMAIN_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def detail_for_domain_error(exc: AssessmentError) -> str:
    """User-facing detail; persistence internals are never leaked."""
    if isinstance(exc, PersistenceError):
        return ErrorMessages.TRANSIENT_FAILURE
    return exc.message


def raise_unauthorized(detail: str) -> NoReturn:
    """Raise a 401 Unauthorized exception with a Bearer challenge."""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def raise_forbidden(detail: str) -> NoReturn:
    """Raise a 403 Forbidden exception."""
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )
