"""
Attempt endpoints: start, answer, submit, judging results, review,
integrity violations, and the history, detail, monitoring and report views.
"""
import logging
from typing import Callable, Dict, List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.orm import Session

from assessment.api.v1.dependencies import (
    get_answer_service,
    get_attempt_service,
    get_repositories,
    get_sandbox_executor,
    get_session_factory,
    get_violation_tracker,
)
from assessment.core.auth import get_current_user, is_staff, require_staff
from assessment.core.background_tasks import safe_background_task
from assessment.core.config import settings
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import NotFoundError
from assessment.core.scoring import ScoreSummary, resolve_scope
from assessment.models import StudentAnswer, User
from assessment.repositories import Repositories
from assessment.schemas.attempts import (
    AnswerResponse,
    AttemptDetailResponse,
    AttemptOverviewResponse,
    AttemptQuestionResponse,
    AttemptResponse,
    AttemptReviewResponse,
    LiveAttemptResponse,
    LiveAttemptsResponse,
    MarkCodeCorrectRequest,
    ReportAttemptResponse,
    ReviewItemResponse,
    ScoreResponse,
    StartAttemptRequest,
    StartAttemptResponse,
    StudentAttemptsResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    TestReportResponse,
    TestReportStatisticsResponse,
    ViolationAcceptedResponse,
    ViolationRequest,
    ViolationResponse,
    ViolationSummaryResponse,
)
from assessment.services.answer_service import AnswerService
from assessment.services.attempt_service import AttemptOverview, AttemptService
from assessment.services.certificate_service import evaluate_certificate_in_background
from assessment.services.judging_service import judge_answer_in_background
from assessment.services.sandbox import SandboxExecutor
from assessment.services.violation_tracker import (
    ViolationTracker,
    record_violation_in_background,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def score_response(summary: ScoreSummary) -> ScoreResponse:
    return ScoreResponse(
        score=summary.score,
        total_points=summary.total_points,
        percentage=summary.percentage,
        answered_count=summary.answered_count,
        graded_count=summary.graded_count,
        pending_count=summary.pending_count,
        question_count=summary.question_count,
    )


def overview_fields(overview: AttemptOverview) -> dict:
    return dict(
        attempt=AttemptResponse.model_validate(overview.attempt),
        attempt_number=overview.attempt_number,
        result=score_response(overview.summary),
        violation_count=overview.violation_count,
    )


def student_fields(overview: AttemptOverview) -> dict:
    student = overview.attempt.student
    return dict(
        student_name=student.name if student else None,
        student_email=student.email if student else None,
    )


@router.post(
    "/start",
    response_model=StartAttemptResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"description": "An in-progress attempt was resumed"}},
)
def start_attempt(
    request: StartAttemptRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
    repos: Repositories = Depends(get_repositories),
):
    """
    Start a new attempt, or resume the student's in-progress one.

    Returns 201 with ``created=true`` for a new attempt and 200 with
    ``created=false`` when an in-progress attempt already existed.
    """
    result = service.start(
        request.test_id,
        current_user.id,
        platform=request.platform,
        browser=request.browser,
        device_info=request.device_info,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK

    scope = resolve_scope(
        result.attempt, repos.questions.list_for_test(result.attempt.test_id)
    )
    return StartAttemptResponse(
        attempt=AttemptResponse.model_validate(result.attempt),
        created=result.created,
        questions=[AttemptQuestionResponse.model_validate(q) for q in scope],
    )


@router.post("/answer", response_model=SubmitAnswerResponse)
def submit_answer(
    request: SubmitAnswerRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: AnswerService = Depends(get_answer_service),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    executor: SandboxExecutor = Depends(get_sandbox_executor),
):
    """
    Save the answer to one question of an in-progress attempt.

    Single-choice answers are graded immediately. Non-empty code answers
    are queued for server-side judging when auto-judging is enabled.
    """
    result = service.submit_answer(
        request.attempt_id,
        current_user.id,
        request.question_id,
        answer=request.answer,
        code_submission=request.code_submission,
        language=request.language,
        is_flagged=request.is_flagged,
    )

    scheduled = False
    if result.needs_judging and settings.SANDBOX_AUTO_JUDGE:
        background_tasks.add_task(
            safe_background_task,
            judge_answer_in_background,
            request.attempt_id,
            request.question_id,
            session_factory=session_factory,
            executor=executor,
        )
        scheduled = True

    return SubmitAnswerResponse(
        answer=AnswerResponse.model_validate(result.answer),
        judging_scheduled=scheduled,
    )


@router.post("/submit", response_model=SubmitAttemptResponse)
def submit_attempt(
    request: SubmitAttemptRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Submit an attempt. Only the first submission is accepted (409 after).

    Certificate eligibility is evaluated in the background afterwards.
    """
    result = service.submit(
        request.attempt_id,
        current_user.id,
        scheduler=background_tasks,
        on_submitted=evaluate_certificate_in_background,
        session_factory=session_factory,
    )
    return SubmitAttemptResponse(
        attempt=AttemptResponse.model_validate(result.attempt),
        result=score_response(result.summary),
    )


@router.post("/mark-code-correct", response_model=AnswerResponse)
def mark_code_correct(
    request: MarkCodeCorrectRequest,
    current_user: User = Depends(get_current_user),
    service: AnswerService = Depends(get_answer_service),
):
    """
    Record a code-judging outcome for a code answer.

    Points are prorated by passed/total test cases. Accepted after
    submission as well, so late results show up in the review score.
    """
    row = service.record_code_judging_result(
        request.attempt_id,
        request.question_id,
        passed_count=request.passed_count,
        total_test_cases=request.total_test_cases,
        per_case_results=request.test_results,
        student_id=None if is_staff(current_user) else current_user.id,
    )
    return AnswerResponse.model_validate(row)


@router.get("/{attempt_id}/review", response_model=AttemptReviewResponse)
def get_attempt_review(
    attempt_id: int,
    current_user: User = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
    repos: Repositories = Depends(get_repositories),
):
    """
    Attempt review with a freshly computed score.

    Students may review only their own attempts and only when the test
    allows it (403 otherwise).
    """
    result = service.review(attempt_id, current_user.id, is_staff(current_user))
    attempt = result.attempt

    answers: Dict[int, StudentAnswer] = {
        a.question_id: a for a in repos.answers.list_for_attempt(attempt.id)
    }
    items: List[ReviewItemResponse] = []
    for question in resolve_scope(attempt, repos.questions.list_for_test(attempt.test_id)):
        answer = answers.get(question.id)
        items.append(
            ReviewItemResponse(
                question_id=question.id,
                question_text=question.question_text,
                question_type=question.question_type,
                options=question.options,
                correct_answer=question.correct_answer,
                explanation=question.explanation,
                points=question.points,
                answer=AnswerResponse.model_validate(answer) if answer else None,
            )
        )

    return AttemptReviewResponse(
        attempt=AttemptResponse.model_validate(attempt),
        result=score_response(result.summary),
        items=items,
    )


@router.post(
    "/{attempt_id}/violation",
    response_model=ViolationAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def log_violation(
    attempt_id: int,
    request: ViolationRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Report an integrity violation.

    Answers 202 immediately; the write happens in the background and a
    failure there is logged, never returned to the client.
    """
    attempt = repos.attempts.get(attempt_id)
    if attempt is None or attempt.student_id != current_user.id:
        raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)

    background_tasks.add_task(
        safe_background_task,
        record_violation_in_background,
        attempt_id,
        request.violation_type.value,
        request.details,
        request.timestamp,
        session_factory=session_factory,
    )
    return ViolationAcceptedResponse(attempt_id=attempt_id)


@router.get("/{attempt_id}/violations", response_model=ViolationSummaryResponse)
def get_attempt_violations(
    attempt_id: int,
    current_user: User = Depends(require_staff),
    tracker: ViolationTracker = Depends(get_violation_tracker),
):
    """Violation counters and event log of an attempt (teachers and admins)."""
    return ViolationSummaryResponse.model_validate(tracker.summary(attempt_id))


@router.get(
    "/student/{student_id}/test/{test_id}", response_model=StudentAttemptsResponse
)
def get_student_attempts(
    student_id: int,
    test_id: int,
    current_user: User = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    A student's attempts at a test with live scores.

    Students may list only their own attempts, teachers only attempts at
    tests they created (403 otherwise). Admins see everything.
    """
    history = service.history(test_id, student_id, current_user)
    return StudentAttemptsResponse(
        test_id=history.test_id,
        student_id=history.student_id,
        attempts=[AttemptOverviewResponse(**overview_fields(o)) for o in history.attempts],
        total_attempts=len(history.attempts),
        best_percentage=history.best_percentage,
    )


@router.get("/detail/{attempt_id}", response_model=AttemptDetailResponse)
def get_attempt_detail(
    attempt_id: int,
    current_user: User = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
):
    """Attempt with live score, attempt number and violation log."""
    overview = service.detail(attempt_id, current_user)
    return AttemptDetailResponse(
        **overview_fields(overview),
        violations=[ViolationResponse.model_validate(v) for v in overview.violations],
    )


@router.get("/live", response_model=LiveAttemptsResponse)
def get_live_attempts(
    test_id: int = Query(..., gt=0, description="Test to monitor"),
    current_user: User = Depends(require_staff),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    Monitor every attempt at a test: progress, score and violation counters.

    Teachers may monitor only tests they created; admins any test.
    """
    live = service.monitor(test_id, current_user)
    return LiveAttemptsResponse(
        test_id=live.test.id,
        attempts=[
            LiveAttemptResponse(**overview_fields(o), **student_fields(o))
            for o in live.attempts
        ],
        live_count=live.live_count,
        completed_count=live.completed_count,
        total_count=len(live.attempts),
    )


@router.get("/report/{test_id}", response_model=TestReportResponse)
def get_test_report(
    test_id: int,
    current_user: User = Depends(require_staff),
    service: AttemptService = Depends(get_attempt_service),
):
    """
    Per-test results: every attempt with its score, percentage and
    violation log, plus aggregate statistics.
    """
    report = service.report(test_id, current_user)
    return TestReportResponse(
        test_id=report.test.id,
        title=report.test.title,
        passing_score=report.passing_score,
        is_creator=report.test.created_by == current_user.id,
        attempts=[
            ReportAttemptResponse(
                **overview_fields(o),
                **student_fields(o),
                violations=[ViolationResponse.model_validate(v) for v in o.violations],
            )
            for o in report.attempts
        ],
        statistics=TestReportStatisticsResponse.model_validate(report.statistics),
    )
