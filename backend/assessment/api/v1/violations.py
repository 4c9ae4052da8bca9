"""
Batched integrity violation reporting.
"""
import logging
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from assessment.api.v1.dependencies import get_repositories, get_session_factory
from assessment.core.auth import get_current_user
from assessment.core.background_tasks import safe_background_task
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import NotFoundError
from assessment.models import User
from assessment.repositories import Repositories
from assessment.schemas.attempts import BulkViolationAcceptedResponse, BulkViolationRequest
from assessment.services.violation_tracker import (
    ViolationReport,
    record_violations_in_background,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/bulk",
    response_model=BulkViolationAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def log_violations_bulk(
    request: BulkViolationRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Report several integrity violations at once.

    Every referenced attempt must belong to the caller (404 otherwise, and
    nothing is recorded). Answers 202; the batch is written in one
    background transaction.
    """
    attempt_ids = sorted({item.attempt_id for item in request.violations})
    for attempt_id in attempt_ids:
        attempt = repos.attempts.get(attempt_id)
        if attempt is None or attempt.student_id != current_user.id:
            raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)

    reports = [
        ViolationReport(
            attempt_id=item.attempt_id,
            violation_type=item.violation_type.value,
            details=item.details,
            timestamp=item.timestamp,
        )
        for item in request.violations
    ]
    background_tasks.add_task(
        safe_background_task,
        record_violations_in_background,
        reports,
        session_factory=session_factory,
    )
    logger.info(
        f"Accepted {len(reports)} violations for attempts {attempt_ids}",
        extra={"user_id": current_user.id},
    )
    return BulkViolationAcceptedResponse(count=len(reports), attempt_ids=attempt_ids)
