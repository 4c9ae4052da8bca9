"""
Pydantic schemas for attempt endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from assessment.core.error_responses import ErrorMessages
from assessment.models import AttemptStatus, QuestionType, ViolationType

MAX_CODE_LENGTH = 100_000
MAX_ANSWER_LENGTH = 20_000


class StartAttemptRequest(BaseModel):
    """Schema for starting (or resuming) an attempt."""

    test_id: int = Field(..., gt=0, description="Test to attempt")
    platform: Optional[str] = Field(
        None, max_length=20, description="Client platform (web, android, ios, mobile)"
    )
    browser: Optional[str] = Field(None, max_length=50, description="Client browser")
    device_info: Optional[Dict[str, Any]] = Field(
        None, description="Opaque device details reported by the client"
    )


class AttemptResponse(BaseModel):
    """Schema for an attempt."""

    id: int = Field(..., description="Attempt ID")
    test_id: int = Field(..., description="Test ID")
    student_id: int = Field(..., description="Student user ID")
    status: AttemptStatus = Field(..., description="in_progress or submitted")
    selected_questions: Optional[List[int]] = Field(
        None, description="Question subset for this attempt (null = all questions)"
    )
    platform: Optional[str] = None
    browser: Optional[str] = None
    score: Optional[float] = Field(None, description="Score stamped at submission")
    total_points: float = Field(..., description="Points available in this attempt")
    total_violations: int = 0
    window_switches: int = 0
    screenshot_attempts: int = 0
    phone_calls: int = 0
    other_violations: int = 0
    started_at: datetime
    submitted_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class AttemptQuestionResponse(BaseModel):
    """A question as shown to a student during an attempt (no answer key)."""

    id: int
    question_text: str
    question_type: QuestionType
    options: Optional[Any] = None
    points: float
    order_number: int

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class StartAttemptResponse(BaseModel):
    """Schema for the start endpoint (201 when created, 200 when resumed)."""

    attempt: AttemptResponse
    created: bool = Field(..., description="False when an in-progress attempt was resumed")
    questions: List[AttemptQuestionResponse] = Field(
        ..., description="Questions in scope for this attempt"
    )


class SubmitAnswerRequest(BaseModel):
    """Schema for submitting one answer."""

    attempt_id: int = Field(..., gt=0)
    question_id: int = Field(..., gt=0)
    answer: Optional[str] = Field(None, max_length=MAX_ANSWER_LENGTH)
    code_submission: Optional[str] = Field(None, max_length=MAX_CODE_LENGTH)
    language: Optional[str] = Field(None, max_length=30)
    is_flagged: bool = False


class AnswerResponse(BaseModel):
    """Schema for a stored answer."""

    id: int
    attempt_id: int
    question_id: int
    answer: Optional[str] = None
    code_submission: Optional[str] = None
    language: Optional[str] = None
    is_correct: bool
    is_flagged: bool
    points_earned: float
    test_results: Optional[Any] = None
    submitted_at: datetime
    graded_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class SubmitAnswerResponse(BaseModel):
    answer: AnswerResponse
    judging_scheduled: bool = Field(
        False, description="True when server-side code judging was queued"
    )


class SubmitAttemptRequest(BaseModel):
    attempt_id: int = Field(..., gt=0)


class ScoreResponse(BaseModel):
    """Live score of an attempt."""

    score: float
    total_points: float
    percentage: int = Field(..., description="Rounded half-up, 0 when no points")
    answered_count: int
    graded_count: int
    pending_count: int = Field(..., description="Answers still awaiting grading")
    question_count: int


class SubmitAttemptResponse(BaseModel):
    attempt: AttemptResponse
    result: ScoreResponse


class MarkCodeCorrectRequest(BaseModel):
    """Schema for reporting a code-judging outcome."""

    attempt_id: int = Field(..., gt=0)
    question_id: int = Field(..., gt=0)
    passed_count: Optional[int] = Field(None, description="Test cases passed")
    total_test_cases: Optional[int] = Field(None, description="Test cases run")
    test_results: Optional[List[Any]] = Field(None, description="Per-case results")


class ReviewItemResponse(BaseModel):
    """One question of the review with the student's answer (if any)."""

    question_id: int
    question_text: str
    question_type: QuestionType
    options: Optional[Any] = None
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: float
    answer: Optional[AnswerResponse] = None


class AttemptReviewResponse(BaseModel):
    attempt: AttemptResponse
    result: ScoreResponse
    items: List[ReviewItemResponse]


class ViolationRequest(BaseModel):
    """Schema for reporting an integrity violation."""

    violation_type: ViolationType
    details: Optional[Union[str, Dict[str, Any]]] = None
    timestamp: Optional[datetime] = Field(
        None, description="Client time of the event (defaults to server time)"
    )

    @field_validator("details")
    @classmethod
    def limit_details(cls, v):
        if isinstance(v, str) and len(v) > 2000:
            raise ValueError("details must be at most 2000 characters")
        return v


class ViolationAcceptedResponse(BaseModel):
    accepted: bool = True
    attempt_id: int


class ViolationResponse(BaseModel):
    id: int
    violation_type: str
    details: Optional[Any] = None
    created_at: datetime

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class ViolationSummaryResponse(BaseModel):
    attempt_id: int
    total_violations: int
    window_switches: int
    screenshot_attempts: int
    phone_calls: int
    other_violations: int
    violations: List[ViolationResponse]

    class Config:
        """Pydantic configuration."""

        from_attributes = True


MAX_VIOLATION_BATCH = 100


class AttemptOverviewResponse(BaseModel):
    """An attempt with its live score."""

    attempt: AttemptResponse
    attempt_number: Optional[int] = Field(
        None, description="1-based position among the student's attempts at the test"
    )
    result: ScoreResponse
    violation_count: int


class StudentAttemptsResponse(BaseModel):
    """A student's attempt history for one test."""

    test_id: int
    student_id: int
    attempts: List[AttemptOverviewResponse] = Field(..., description="Newest first")
    total_attempts: int
    best_percentage: int


class AttemptDetailResponse(AttemptOverviewResponse):
    violations: List[ViolationResponse]


class LiveAttemptResponse(AttemptOverviewResponse):
    student_name: Optional[str] = None
    student_email: Optional[str] = None


class LiveAttemptsResponse(BaseModel):
    """Monitoring view of every attempt at a test."""

    test_id: int
    attempts: List[LiveAttemptResponse] = Field(..., description="Newest first")
    live_count: int = Field(..., description="Attempts still in progress")
    completed_count: int
    total_count: int


class ReportAttemptResponse(LiveAttemptResponse):
    violations: List[ViolationResponse]


class TestReportStatisticsResponse(BaseModel):
    total_attempts: int
    submitted_count: int
    in_progress_count: int
    average_score: float
    highest_score: float
    lowest_score: float
    average_percentage: float
    pass_count: int = Field(..., description="Submitted attempts at or above the passing score")
    fail_count: int
    total_violations: int

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class TestReportResponse(BaseModel):
    """Per-test results for the teacher who created the test (or an admin)."""

    __test__ = False  # not a pytest test class

    test_id: int
    title: str
    passing_score: int
    is_creator: bool
    attempts: List[ReportAttemptResponse]
    statistics: TestReportStatisticsResponse


class BulkViolationItem(ViolationRequest):
    attempt_id: int = Field(..., gt=0)


class BulkViolationRequest(BaseModel):
    """Several violation events, e.g. flushed by a client after a reconnect."""

    violations: List[BulkViolationItem] = Field(..., max_length=MAX_VIOLATION_BATCH)

    @field_validator("violations")
    @classmethod
    def require_violations(cls, v):
        if not v:
            raise ValueError(ErrorMessages.EMPTY_VIOLATION_BATCH)
        return v


class BulkViolationAcceptedResponse(BaseModel):
    accepted: bool = True
    count: int
    attempt_ids: List[int]
