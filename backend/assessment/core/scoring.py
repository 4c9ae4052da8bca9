"""
Score aggregation for attempts.

The score is always recomputed from the current answer rows. Grading events
for code and free-text answers can land after an attempt is submitted, so
nothing here is cached: the submit path and the review path both call
``compute_score`` and see the latest state.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Protocol, Sequence, Set

from assessment.models.models import QuestionType
from assessment.models.types import normalize_question_ids

logger = logging.getLogger(__name__)

# Question types graded outside the answer intake path
ASYNC_GRADED_TYPES = {QuestionType.FREE_TEXT, QuestionType.CODE}


class QuestionLike(Protocol):
    id: int
    points: float
    question_type: QuestionType


class AnswerLike(Protocol):
    question_id: int
    points_earned: float
    graded_at: object


class AttemptLike(Protocol):
    id: int
    test_id: int
    selected_questions: Optional[List[int]]


class QuestionSource(Protocol):
    def list_for_test(self, test_id: int) -> Sequence[QuestionLike]: ...


class AnswerSource(Protocol):
    def list_for_attempt(self, attempt_id: int) -> Sequence[AnswerLike]: ...


@dataclass(frozen=True)
class ScoreSummary:
    """Result of one score computation."""

    score: float
    total_points: float
    percentage: int
    answered_count: int = 0
    graded_count: int = 0
    pending_count: int = 0
    question_count: int = 0

    def passes(self, passing_score: int) -> bool:
        return self.percentage >= passing_score


def percentage(score: float, total: float) -> int:
    """
    Integer percentage of score over total, rounding halves up.

    62.5 rounds to 63; a zero or negative total yields 0.
    """
    if not total or total <= 0:
        return 0
    ratio = Decimal(str(score)) * 100 / Decimal(str(total))
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_scope(
    attempt: AttemptLike, questions: Iterable[QuestionLike]
) -> List[QuestionLike]:
    """
    Questions an attempt is scored over.

    The attempt's stored subset when it has one, otherwise every question of
    the test. A subset naming no surviving question falls back to the full
    test so the attempt remains scoreable.
    """
    all_questions = list(questions)
    subset = normalize_question_ids(attempt.selected_questions)
    if subset is None:
        return all_questions

    wanted: Set[int] = set(subset)
    scoped = [q for q in all_questions if q.id in wanted]
    if not scoped:
        logger.warning(
            f"Attempt {attempt.id} subset matches no questions of test "
            f"{attempt.test_id}; scoring over all questions"
        )
        return all_questions
    return scoped


def compute_score(
    attempt: AttemptLike,
    answers_repo: AnswerSource,
    questions_repo: QuestionSource,
) -> ScoreSummary:
    """
    Compute the live score of an attempt.

    score is the sum of ``points_earned`` over answers to in-scope questions,
    each capped at its question's points; total is the sum of question
    points over the scope. Answers to questions outside the scope are
    ignored, which keeps score <= total.
    """
    scope = resolve_scope(attempt, questions_repo.list_for_test(attempt.test_id))
    by_id = {q.id: q for q in scope}
    total = float(sum(q.points or 0 for q in scope))

    score = 0.0
    answered = graded = pending = 0
    for answer in answers_repo.list_for_attempt(attempt.id):
        question = by_id.get(answer.question_id)
        if question is None:
            continue
        answered += 1
        earned = max(0.0, min(float(answer.points_earned or 0), float(question.points)))
        score += earned
        if answer.graded_at is not None:
            graded += 1
        elif question.question_type in ASYNC_GRADED_TYPES:
            pending += 1

    return ScoreSummary(
        score=score,
        total_points=total,
        percentage=percentage(score, total),
        answered_count=answered,
        graded_count=graded,
        pending_count=pending,
        question_count=len(scope),
    )
