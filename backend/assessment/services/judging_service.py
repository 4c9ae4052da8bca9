"""
Server-side judging of stored code answers.

Runs after answer intake as a background task: loads the submission and the
question's test cases, executes them in the sandbox and records the outcome
through ``AnswerService.record_code_judging_result``. Database work happens
on the threadpool in short sessions so no connection is held while student
code runs.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import NotFoundError
from assessment.models import QuestionType
from assessment.repositories import Repositories
from assessment.services.answer_service import AnswerService
from assessment.services.sandbox import JudgingReport, SandboxExecutor

logger = logging.getLogger(__name__)


@dataclass
class JudgingJob:
    code: str
    language: Optional[str]
    test_cases: List[Any]


class JudgingService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: SandboxExecutor,
    ):
        self.session_factory = session_factory
        self.executor = executor

    def _load_job(self, attempt_id: int, question_id: int) -> Optional[JudgingJob]:
        with self.session_factory() as db:
            repos = Repositories.from_session(db)
            question = repos.questions.get(question_id)
            if question is None:
                raise NotFoundError(ErrorMessages.question_not_found(question_id))
            if QuestionType(question.question_type) != QuestionType.CODE:
                logger.info(f"Question {question_id} is not a code question; skipping")
                return None

            answer = repos.answers.get(attempt_id, question_id)
            if answer is None or not (answer.code_submission or "").strip():
                logger.info(
                    "No code submission to judge",
                    extra={"attempt_id": attempt_id, "question_id": question_id},
                )
                return None

            test_cases = list(question.test_cases or [])
            if not test_cases:
                # Grading without cases would fall back to full credit
                logger.info(
                    "Code question has no test cases; leaving answer for manual grading",
                    extra={"attempt_id": attempt_id, "question_id": question_id},
                )
                return None
            return JudgingJob(answer.code_submission, answer.language, test_cases)

    def _record(
        self, attempt_id: int, question_id: int, judged_code: str, report: JudgingReport
    ) -> bool:
        with self.session_factory() as db:
            repos = Repositories.from_session(db)
            current = repos.answers.get(attempt_id, question_id)
            if current is not None and current.code_submission != judged_code:
                # Student resubmitted while this run was in flight
                logger.info(
                    "Discarding stale judging result",
                    extra={"attempt_id": attempt_id, "question_id": question_id},
                )
                return False
            AnswerService(repos).record_code_judging_result(
                attempt_id,
                question_id,
                passed_count=report.passed_count,
                total_test_cases=report.total_count,
                per_case_results=[r.to_dict() for r in report.results],
            )
            return True

    async def judge_answer(self, attempt_id: int, question_id: int) -> Optional[JudgingReport]:
        """
        Judge the stored code answer for (attempt, question).

        Returns the report, or None if there was nothing to judge or the
        result was superseded by a newer submission.
        """
        job = await run_in_threadpool(self._load_job, attempt_id, question_id)
        if job is None:
            return None

        report = await self.executor.run_test_cases(job.code, job.language or "python", job.test_cases)
        recorded = await run_in_threadpool(
            self._record, attempt_id, question_id, job.code, report
        )
        return report if recorded else None


async def judge_answer_in_background(
    attempt_id: int,
    question_id: int,
    *,
    session_factory: Callable[[], Session],
    executor: SandboxExecutor,
) -> None:
    """Background entry point; pair with ``safe_background_task``."""
    await JudgingService(session_factory, executor).judge_answer(attempt_id, question_id)
