"""
Answer intake and grading of individual answers.

Incoming answers are normalized into a typed payload chosen by the stored
question type, then written with an atomic upsert. Single-choice answers
are graded immediately; free-text and code answers are stored ungraded and
receive their points later through ``record_code_judging_result`` (code) or
manual review (free text).
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from assessment.core.db_error_handling import handle_db_error
from assessment.core.datetime_utils import utc_now
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import (
    AssessmentValidationError,
    AttemptClosedError,
    NotFoundError,
)
from assessment.models import AttemptStatus, Question, QuestionType, StudentAnswer, TestAttempt
from assessment.models.types import normalize_question_ids
from assessment.observability import metrics
from assessment.repositories import Repositories

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleChoicePayload:
    answer: str
    is_flagged: bool = False


@dataclass(frozen=True)
class FreeTextPayload:
    answer: str
    is_flagged: bool = False


@dataclass(frozen=True)
class CodePayload:
    code: str
    language: Optional[str] = None
    is_flagged: bool = False

    @property
    def needs_judging(self) -> bool:
        return bool(self.code.strip())


AnswerPayload = Union[SingleChoicePayload, FreeTextPayload, CodePayload]


@dataclass
class AnswerResult:
    answer: StudentAnswer
    payload: AnswerPayload

    @property
    def needs_judging(self) -> bool:
        return isinstance(self.payload, CodePayload) and self.payload.needs_judging


def build_payload(
    question: Question,
    answer: Optional[str],
    code_submission: Optional[str],
    language: Optional[str],
    is_flagged: bool,
) -> AnswerPayload:
    """
    Validate the raw request fields against the question type.

    Raises:
        AssessmentValidationError: Required field missing or a field of the
            wrong kind supplied (e.g. code for a single-choice question).
    """
    is_flagged = bool(is_flagged)
    question_type = QuestionType(question.question_type)

    if question_type == QuestionType.CODE:
        if code_submission is None:
            raise AssessmentValidationError(ErrorMessages.MISSING_CODE)
        return CodePayload(code=code_submission, language=language, is_flagged=is_flagged)

    if code_submission:
        raise AssessmentValidationError(
            ErrorMessages.question_type_mismatch(question.id, question_type.value)
        )

    if question_type == QuestionType.SINGLE_CHOICE:
        if answer is None or answer == "":
            raise AssessmentValidationError(ErrorMessages.MISSING_ANSWER)
        return SingleChoicePayload(answer=answer, is_flagged=is_flagged)

    return FreeTextPayload(answer=answer or "", is_flagged=is_flagged)


def question_in_scope(attempt: TestAttempt, question: Question) -> bool:
    """True if the question belongs to the attempt's test and selected subset."""
    if question.test_id != attempt.test_id:
        return False
    subset = normalize_question_ids(attempt.selected_questions)
    return subset is None or question.id in subset


class AnswerService:
    def __init__(self, repos: Repositories):
        self.repos = repos
        self.db = repos.db

    def _load_question_in_scope(self, attempt: TestAttempt, question_id: int) -> Question:
        question = self.repos.questions.get(question_id)
        if question is None:
            raise NotFoundError(ErrorMessages.question_not_found(question_id))
        if not question_in_scope(attempt, question):
            raise AssessmentValidationError(
                ErrorMessages.question_not_in_attempt(question_id, attempt.id)
            )
        return question

    def submit_answer(
        self,
        attempt_id: int,
        student_id: int,
        question_id: int,
        answer: Optional[str] = None,
        code_submission: Optional[str] = None,
        language: Optional[str] = None,
        is_flagged: bool = False,
    ) -> AnswerResult:
        """
        Store (or replace) the student's answer to one question.

        Raises:
            AssessmentValidationError: Missing ids, question outside the
                attempt, or answer shape not matching the question type.
            NotFoundError: Attempt (or question) does not exist.
            AttemptClosedError: The attempt is already submitted.
            PersistenceError: The answer could not be stored.
        """
        if not attempt_id or not question_id:
            raise AssessmentValidationError("attempt_id and question_id are required.")

        with handle_db_error(self.db, "submit answer"):
            attempt = self.repos.attempts.get(attempt_id)
            if attempt is None or attempt.student_id != student_id:
                raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptClosedError(
                    ErrorMessages.attempt_already_submitted(attempt.id),
                    attempt_id=attempt.id,
                )

            question = self._load_question_in_scope(attempt, question_id)
            payload = build_payload(question, answer, code_submission, language, is_flagged)

            if isinstance(payload, SingleChoicePayload):
                is_correct = payload.answer == question.correct_answer
                row = self.repos.answers.upsert_answer(
                    attempt_id=attempt.id,
                    question_id=question.id,
                    answer=payload.answer,
                    code_submission=None,
                    language=None,
                    is_correct=is_correct,
                    is_flagged=payload.is_flagged,
                    points_earned=float(question.points) if is_correct else 0.0,
                    graded_at=utc_now(),
                )
            elif isinstance(payload, CodePayload):
                row = self.repos.answers.upsert_answer(
                    attempt_id=attempt.id,
                    question_id=question.id,
                    answer=None,
                    code_submission=payload.code,
                    language=payload.language,
                    is_correct=False,
                    is_flagged=payload.is_flagged,
                    points_earned=0.0,
                    graded_at=None,
                )
            else:
                row = self.repos.answers.upsert_answer(
                    attempt_id=attempt.id,
                    question_id=question.id,
                    answer=payload.answer,
                    code_submission=None,
                    language=None,
                    is_correct=False,
                    is_flagged=payload.is_flagged,
                    points_earned=0.0,
                    graded_at=None,
                )
            self.db.commit()

        metrics.record_answer(QuestionType(question.question_type).value)
        logger.debug(
            f"Stored answer for question {question.id}",
            extra={"attempt_id": attempt.id, "question_id": question.id},
        )
        return AnswerResult(answer=row, payload=payload)

    def record_code_judging_result(
        self,
        attempt_id: int,
        question_id: int,
        passed_count: Optional[int] = None,
        total_test_cases: Optional[int] = None,
        per_case_results: Optional[List[Any]] = None,
        student_id: Optional[int] = None,
    ) -> StudentAnswer:
        """
        Apply a code-judging outcome to the answer row.

        Points are ``question.points * passed / total``; without usable counts
        the answer gets full credit. Only the grading columns are written, so
        the stored submission is preserved. Accepted for submitted attempts
        too. ``student_id``, when given, must own the attempt.
        """
        if not attempt_id or not question_id:
            raise AssessmentValidationError("attempt_id and question_id are required.")
        if total_test_cases is not None and total_test_cases < 0:
            raise AssessmentValidationError("total_test_cases cannot be negative.")

        with handle_db_error(self.db, "record code judging result"):
            attempt = self.repos.attempts.get(attempt_id)
            if attempt is None or (student_id is not None and attempt.student_id != student_id):
                raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)

            question = self._load_question_in_scope(attempt, question_id)
            if QuestionType(question.question_type) != QuestionType.CODE:
                raise AssessmentValidationError(ErrorMessages.NOT_A_CODE_QUESTION)

            max_points = float(question.points)
            if passed_count is not None and total_test_cases:
                passed = max(0, min(passed_count, total_test_cases))
                if passed != passed_count:
                    logger.warning(
                        ErrorMessages.invalid_judging_counts(passed_count, total_test_cases),
                        extra={"attempt_id": attempt.id, "question_id": question.id},
                    )
                points = min(max_points, max_points * passed / total_test_cases)
                is_correct = passed > 0
            else:
                logger.warning(
                    "Judging result without test case counts; awarding full credit",
                    extra={"attempt_id": attempt.id, "question_id": question.id},
                )
                points = max_points
                is_correct = True

            row = self.repos.answers.upsert_judging_result(
                attempt_id=attempt.id,
                question_id=question.id,
                is_correct=is_correct,
                points_earned=points,
                test_results=per_case_results,
                graded_at=utc_now(),
            )
            self.db.commit()

        logger.info(
            f"Recorded judging result for question {question.id}: {points}/{max_points}",
            extra={"attempt_id": attempt.id, "question_id": question.id},
        )
        return row
