"""
Attempt lifecycle: start, submit and lookup, plus the read models built on
top of it (attempt history, attempt detail, live monitoring, test reports).

Active attempt prevention uses a dual check:

1. Application level: an existing in-progress attempt for the same
   (test, student) is returned instead of creating a new one.
2. Database level: the partial unique index
   ``uq_test_attempts_one_in_progress`` rejects the second of two concurrent
   inserts. The loser rolls back and returns the winner's attempt, so both
   callers observe the same attempt.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.exc import IntegrityError

from assessment.core.background_tasks import safe_background_task
from assessment.core.config import settings
from assessment.core.db_error_handling import handle_db_error
from assessment.core.datetime_utils import utc_now
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import (
    AccessDeniedError,
    AttemptClosedError,
    AttemptLimitExceeded,
    NotFoundError,
    RestrictionViolation,
)
from assessment.core.question_selection import select_questions
from assessment.core.scoring import ScoreSummary, compute_score
from assessment.models import (
    AttemptStatus,
    PlatformRestriction,
    Question,
    Test,
    TestAttempt,
    TestViolation,
    User,
    UserRole,
)
from assessment.observability import metrics
from assessment.repositories import Repositories

logger = logging.getLogger(__name__)

MOBILE_PLATFORMS = {"android", "ios", "mobile"}


class TaskScheduler(Protocol):
    """Anything with FastAPI ``BackgroundTasks.add_task`` semantics."""

    def add_task(self, func: Any, *args: Any, **kwargs: Any) -> None: ...


@dataclass
class StartResult:
    attempt: TestAttempt
    created: bool


@dataclass
class SubmitResult:
    attempt: TestAttempt
    summary: ScoreSummary


@dataclass
class AttemptOverview:
    """An attempt with its live score, as listed to students and teachers."""

    attempt: TestAttempt
    summary: ScoreSummary
    attempt_number: Optional[int] = None
    violations: List[TestViolation] = field(default_factory=list)

    @property
    def violation_count(self) -> int:
        return self.attempt.total_violations or 0


@dataclass
class AttemptHistory:
    test_id: int
    student_id: int
    attempts: List[AttemptOverview]

    @property
    def best_percentage(self) -> int:
        return max((o.summary.percentage for o in self.attempts), default=0)


@dataclass
class LiveAttempts:
    test: Test
    attempts: List[AttemptOverview]

    @property
    def live_count(self) -> int:
        return sum(1 for o in self.attempts if o.attempt.status == AttemptStatus.IN_PROGRESS)

    @property
    def completed_count(self) -> int:
        return sum(1 for o in self.attempts if o.attempt.status == AttemptStatus.SUBMITTED)


@dataclass(frozen=True)
class ReportStatistics:
    """
    Aggregates over a test's attempts.

    Scores and pass/fail counts cover submitted attempts only; pass/fail
    compares the percentage with the test's passing score.
    """

    total_attempts: int
    submitted_count: int
    in_progress_count: int
    average_score: float
    highest_score: float
    lowest_score: float
    average_percentage: float
    pass_count: int
    fail_count: int
    total_violations: int

    @classmethod
    def from_overviews(
        cls, overviews: Sequence[AttemptOverview], passing_score: int
    ) -> "ReportStatistics":
        submitted = [
            o.summary for o in overviews if o.attempt.status == AttemptStatus.SUBMITTED
        ]
        scores = [s.score for s in submitted]
        passed = sum(1 for s in submitted if s.passes(passing_score))
        return cls(
            total_attempts=len(overviews),
            submitted_count=len(submitted),
            in_progress_count=len(overviews) - len(submitted),
            average_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
            highest_score=max(scores, default=0.0),
            lowest_score=min(scores, default=0.0),
            average_percentage=(
                round(sum(s.percentage for s in submitted) / len(submitted), 2)
                if submitted
                else 0.0
            ),
            pass_count=passed,
            fail_count=len(submitted) - passed,
            total_violations=sum(o.violation_count for o in overviews),
        )


@dataclass
class TestReport:
    __test__ = False  # not a pytest test class

    test: Test
    passing_score: int
    attempts: List[AttemptOverview]
    statistics: ReportStatistics


class _LoadedQuestions:
    """Question source over an already loaded list, for scoring many attempts."""

    def __init__(self, questions: List[Question]):
        self.questions = questions

    def list_for_test(self, test_id: int) -> List[Question]:
        return self.questions


def normalize_platform(platform: Optional[str]) -> Optional[str]:
    """Collapse client platform names: android and ios are both mobile."""
    if platform is None:
        return None
    value = platform.strip().lower()
    return PlatformRestriction.MOBILE.value if value in MOBILE_PLATFORMS else value


def check_platform(test: Test, platform: Optional[str]) -> None:
    restriction = (test.platform_restriction or "").strip().lower()
    if not restriction or restriction == PlatformRestriction.ANY.value:
        return
    if normalize_platform(platform) != restriction:
        raise RestrictionViolation(ErrorMessages.platform_restricted(restriction))


def check_browser(test: Test, browser: Optional[str]) -> None:
    allowed = [b for b in (test.allowed_browsers or []) if b]
    if not allowed:
        return
    if not browser or browser.strip().lower() not in {b.lower() for b in allowed}:
        raise RestrictionViolation(ErrorMessages.browser_restricted(allowed))


class AttemptService:
    def __init__(self, repos: Repositories, rng: Optional[random.Random] = None):
        self.repos = repos
        self.db = repos.db
        self.rng = rng

    def get(self, attempt_id: int) -> TestAttempt:
        attempt = self.repos.attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
        return attempt

    def get_owned(self, attempt_id: int, student_id: int) -> TestAttempt:
        """
        Fetch an attempt belonging to ``student_id``.

        Foreign attempts are reported as not found so attempt ids of other
        students cannot be discovered.
        """
        attempt = self.get(attempt_id)
        if attempt.student_id != student_id:
            raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
        return attempt

    def start(
        self,
        test_id: int,
        student_id: int,
        platform: Optional[str] = None,
        browser: Optional[str] = None,
        device_info: Optional[dict] = None,
    ) -> StartResult:
        """
        Begin (or resume) a student's attempt at a test.

        Raises:
            NotFoundError: The test does not exist.
            RestrictionViolation: Platform or browser not allowed.
            AttemptLimitExceeded: No attempts left.
            PersistenceError: The attempt could not be stored.
        """
        with handle_db_error(self.db, "start attempt"):
            test = self.repos.tests.get(test_id)
            if test is None:
                raise NotFoundError(ErrorMessages.TEST_NOT_FOUND)

            check_platform(test, platform)
            check_browser(test, browser)

            existing = self.repos.attempts.find_in_progress(test_id, student_id)
            if existing is not None:
                logger.info(
                    f"Resuming attempt {existing.id} for student {student_id}",
                    extra={"attempt_id": existing.id},
                )
                metrics.record_attempt_started(test_id, resumed=True)
                return StartResult(existing, created=False)

            if test.max_attempts and test.max_attempts > 0:
                used = self.repos.attempts.count_submitted(test_id, student_id)
                if used >= test.max_attempts:
                    raise AttemptLimitExceeded(
                        ErrorMessages.max_attempts_reached(test.max_attempts),
                        max_attempts=test.max_attempts,
                    )

            questions = self.repos.questions.list_for_test(test_id)
            selected = select_questions(
                test.questions_to_ask, [q.id for q in questions], self.rng
            )

            attempt = TestAttempt(
                test_id=test_id,
                student_id=student_id,
                status=AttemptStatus.IN_PROGRESS,
                selected_questions=selected,
                platform=platform,
                browser=browser,
                device_info=device_info,
                # Full test total; narrowed to the selected scope on submit
                total_points=float(sum(q.points for q in questions)),
                started_at=utc_now(),
            )
            try:
                self.repos.attempts.add(attempt)
            except IntegrityError:
                self.db.rollback()
                winner = self.repos.attempts.find_in_progress(test_id, student_id)
                if winner is None:
                    raise
                logger.warning(
                    f"Concurrent start detected: student {student_id} test {test_id}; "
                    f"returning attempt {winner.id}"
                )
                metrics.record_attempt_started(test_id, resumed=True)
                return StartResult(winner, created=False)

            self.db.commit()
            self.db.refresh(attempt)

        logger.info(
            f"Started attempt {attempt.id} for student {student_id} on test {test_id} "
            f"({len(selected) if selected else len(questions)} questions)",
            extra={"attempt_id": attempt.id},
        )
        metrics.record_attempt_started(test_id, resumed=False)
        return StartResult(attempt, created=True)

    def submit(
        self,
        attempt_id: int,
        student_id: int,
        scheduler: Optional[TaskScheduler] = None,
        on_submitted: Optional[Callable[..., Any]] = None,
        **task_kwargs: Any,
    ) -> SubmitResult:
        """
        Finalize an attempt and stamp its score.

        Submission is single-shot: a second call raises AttemptClosedError.
        Later grading events are reflected by the review path, which
        recomputes the score on read.

        When ``scheduler`` and ``on_submitted`` are given, ``on_submitted`` is
        scheduled with the attempt id (plus ``task_kwargs``) once the commit
        has succeeded.
        """
        with handle_db_error(self.db, "submit attempt"):
            attempt = self.get_owned(attempt_id, student_id)
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptClosedError(
                    ErrorMessages.attempt_already_submitted(attempt.id),
                    attempt_id=attempt.id,
                )

            summary = compute_score(attempt, self.repos.answers, self.repos.questions)
            attempt.status = AttemptStatus.SUBMITTED
            attempt.score = summary.score
            attempt.total_points = summary.total_points
            attempt.submitted_at = utc_now()
            self.db.commit()
            self.db.refresh(attempt)

        logger.info(
            f"Attempt {attempt.id} submitted: {summary.score}/{summary.total_points} "
            f"({summary.percentage}%), {summary.pending_count} answers pending grading",
            extra={"attempt_id": attempt.id},
        )
        metrics.record_attempt_submitted(attempt.test_id, summary.percentage)

        if scheduler is not None and on_submitted is not None:
            scheduler.add_task(safe_background_task, on_submitted, attempt.id, **task_kwargs)

        return SubmitResult(attempt, summary)

    def review(self, attempt_id: int, viewer_id: int, viewer_is_staff: bool) -> SubmitResult:
        """
        Attempt plus live score for the review screen.

        Students see only their own attempts, and only when the test allows
        review. Staff see any attempt.
        """
        attempt = self.get(attempt_id)
        if not viewer_is_staff:
            if attempt.student_id != viewer_id:
                raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
            test = self.repos.tests.get(attempt.test_id)
            if test is not None and not test.show_review_to_students:
                raise AccessDeniedError(ErrorMessages.REVIEW_NOT_AVAILABLE)

        summary = compute_score(attempt, self.repos.answers, self.repos.questions)
        return SubmitResult(attempt, summary)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def _get_test(self, test_id: int) -> Test:
        test = self.repos.tests.get(test_id)
        if test is None:
            raise NotFoundError(ErrorMessages.TEST_NOT_FOUND)
        return test

    def _check_test_access(self, test: Test, viewer: User) -> None:
        """Admins see every test, teachers only the tests they created."""
        if viewer.role == UserRole.ADMIN:
            return
        if viewer.role != UserRole.TEACHER:
            raise AccessDeniedError(ErrorMessages.ROLE_NOT_PERMITTED)
        if test.created_by != viewer.id:
            raise AccessDeniedError(ErrorMessages.NOT_TEST_OWNER)

    def _overviews(
        self,
        test_id: int,
        attempts: Sequence[TestAttempt],
        numbers: Optional[Dict[int, int]] = None,
        violations: Optional[Dict[int, List[TestViolation]]] = None,
    ) -> List[AttemptOverview]:
        questions = _LoadedQuestions(self.repos.questions.list_for_test(test_id))
        return [
            AttemptOverview(
                attempt=attempt,
                summary=compute_score(attempt, self.repos.answers, questions),
                attempt_number=(numbers or {}).get(attempt.id),
                violations=list((violations or {}).get(attempt.id, [])),
            )
            for attempt in attempts
        ]

    def history(self, test_id: int, student_id: int, viewer: User) -> AttemptHistory:
        """
        A student's attempts at a test, newest first, numbered oldest first.

        Students may list only their own attempts; teachers only attempts at
        tests they created.

        Raises:
            AccessDeniedError: The viewer may not see these attempts.
            NotFoundError: The test does not exist.
        """
        if viewer.role == UserRole.STUDENT and student_id != viewer.id:
            raise AccessDeniedError(ErrorMessages.OWN_ATTEMPTS_ONLY)
        test = self._get_test(test_id)
        if viewer.role != UserRole.STUDENT:
            self._check_test_access(test, viewer)

        attempts = self.repos.attempts.list_for_student(test_id, student_id)
        numbers = {a.id: n for n, a in enumerate(attempts, start=1)}
        overviews = self._overviews(test_id, list(reversed(attempts)), numbers)
        return AttemptHistory(test_id=test_id, student_id=student_id, attempts=overviews)

    def detail(self, attempt_id: int, viewer: User) -> AttemptOverview:
        """
        One attempt with its live score, number and violation log.

        A student asking for someone else's attempt gets 404, like every
        other attempt lookup.
        """
        attempt = self.get(attempt_id)
        if viewer.role == UserRole.STUDENT:
            if attempt.student_id != viewer.id:
                raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
        else:
            self._check_test_access(self._get_test(attempt.test_id), viewer)

        siblings = self.repos.attempts.list_for_student(attempt.test_id, attempt.student_id)
        numbers = {a.id: n for n, a in enumerate(siblings, start=1)}
        violations = {attempt.id: self.repos.violations.list_for_attempt(attempt.id)}
        return self._overviews(attempt.test_id, [attempt], numbers, violations)[0]

    def monitor(self, test_id: int, viewer: User) -> LiveAttempts:
        """Every attempt at a test with progress and violation counters."""
        test = self._get_test(test_id)
        self._check_test_access(test, viewer)
        attempts = self.repos.attempts.list_for_test(test_id)
        return LiveAttempts(test=test, attempts=self._overviews(test_id, attempts))

    def report(self, test_id: int, viewer: User) -> TestReport:
        """Scores, violation logs and statistics over every attempt at a test."""
        test = self._get_test(test_id)
        self._check_test_access(test, viewer)
        passing_score = (
            settings.DEFAULT_PASSING_SCORE if test.passing_score is None else test.passing_score
        )

        attempts = self.repos.attempts.list_for_test(test_id)
        violations = self.repos.violations.list_for_attempts(a.id for a in attempts)
        overviews = self._overviews(test_id, attempts, violations=violations)
        logger.info(
            f"Built report for test {test_id}: {len(overviews)} attempts",
            extra={"test_id": test_id},
        )
        return TestReport(
            test=test,
            passing_score=passing_score,
            attempts=overviews,
            statistics=ReportStatistics.from_overviews(overviews, passing_score),
        )
