"""
Answer persistence with atomic upserts.

There is exactly one row per (attempt, question). Both answer intake and
code-judging results write through ``INSERT ... ON CONFLICT DO UPDATE`` on
the unique (attempt_id, question_id) constraint, so concurrent writers never
create duplicates and never observe a missing row.
"""
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from assessment.core.datetime_utils import utc_now
from assessment.models import StudentAnswer

_CONFLICT_COLUMNS = ["attempt_id", "question_id"]


class AnswerRepository:
    def __init__(self, db: Session):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(StudentAnswer)
        if dialect == "sqlite":
            return sqlite.insert(StudentAnswer)
        raise NotImplementedError(f"Answer upsert not supported on {dialect}")

    def get(self, attempt_id: int, question_id: int) -> Optional[StudentAnswer]:
        return self.db.execute(
            select(StudentAnswer)
            .where(
                StudentAnswer.attempt_id == attempt_id,
                StudentAnswer.question_id == question_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_for_attempt(self, attempt_id: int) -> List[StudentAnswer]:
        return list(
            self.db.execute(
                select(StudentAnswer)
                .where(StudentAnswer.attempt_id == attempt_id)
                .order_by(StudentAnswer.question_id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def upsert_answer(
        self,
        *,
        attempt_id: int,
        question_id: int,
        answer: Optional[str],
        code_submission: Optional[str],
        language: Optional[str],
        is_correct: bool,
        is_flagged: bool,
        points_earned: float,
        graded_at: Optional[datetime],
    ) -> StudentAnswer:
        """Insert or fully replace the student's answer to a question."""
        values: dict[str, Any] = {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "answer": answer,
            "code_submission": code_submission,
            "language": language,
            "is_correct": is_correct,
            "is_flagged": is_flagged,
            "points_earned": points_earned,
            "test_results": None,
            "submitted_at": utc_now(),
            "graded_at": graded_at,
        }
        stmt = self._insert().values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=_CONFLICT_COLUMNS,
            set_={
                name: stmt.excluded[name]
                for name in values
                if name not in _CONFLICT_COLUMNS
            },
        )
        self.db.execute(stmt)
        return self.get(attempt_id, question_id)

    def upsert_judging_result(
        self,
        *,
        attempt_id: int,
        question_id: int,
        is_correct: bool,
        points_earned: float,
        test_results: Optional[list],
        graded_at: datetime,
    ) -> StudentAnswer:
        """
        Record a grading outcome without touching the submitted content.

        A missing row is created with an empty submission so late results
        are never lost.
        """
        graded = {
            "is_correct": is_correct,
            "points_earned": points_earned,
            "test_results": test_results,
            "graded_at": graded_at,
        }
        stmt = self._insert().values(
            attempt_id=attempt_id,
            question_id=question_id,
            answer=None,
            code_submission="",
            is_flagged=False,
            submitted_at=utc_now(),
            **graded,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=_CONFLICT_COLUMNS,
            set_={name: stmt.excluded[name] for name in graded},
        )
        self.db.execute(stmt)
        return self.get(attempt_id, question_id)
