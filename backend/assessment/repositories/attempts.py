"""
Attempt persistence.
"""
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from assessment.models import AttemptStatus, TestAttempt

# Violation type -> attempt counter column; unknown types use other_violations
VIOLATION_COUNTERS = {
    "window_switch": "window_switches",
    "tab_switch": "window_switches",
    "screenshot_attempt": "screenshot_attempts",
    "phone_call": "phone_calls",
}
DEFAULT_VIOLATION_COUNTER = "other_violations"


def counter_for_violation(violation_type: str) -> str:
    return VIOLATION_COUNTERS.get(violation_type, DEFAULT_VIOLATION_COUNTER)


class AttemptRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, attempt_id: int) -> Optional[TestAttempt]:
        return self.db.get(TestAttempt, attempt_id)

    def refresh(self, attempt: TestAttempt) -> TestAttempt:
        self.db.refresh(attempt)
        return attempt

    def find_in_progress(self, test_id: int, student_id: int) -> Optional[TestAttempt]:
        return (
            self.db.query(TestAttempt)
            .filter(
                TestAttempt.test_id == test_id,
                TestAttempt.student_id == student_id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS,
            )
            .order_by(TestAttempt.started_at.desc())
            .first()
        )

    def count_submitted(self, test_id: int, student_id: int) -> int:
        return (
            self.db.query(TestAttempt)
            .filter(
                TestAttempt.test_id == test_id,
                TestAttempt.student_id == student_id,
                TestAttempt.status == AttemptStatus.SUBMITTED,
            )
            .count()
        )

    def list_submitted(self, test_id: Optional[int] = None) -> List[TestAttempt]:
        query = self.db.query(TestAttempt).filter(
            TestAttempt.status == AttemptStatus.SUBMITTED
        )
        if test_id is not None:
            query = query.filter(TestAttempt.test_id == test_id)
        return query.order_by(TestAttempt.id).all()

    def list_for_student(self, test_id: int, student_id: int) -> List[TestAttempt]:
        """A student's attempts at a test, oldest first."""
        return (
            self.db.query(TestAttempt)
            .filter(
                TestAttempt.test_id == test_id,
                TestAttempt.student_id == student_id,
            )
            .order_by(TestAttempt.started_at, TestAttempt.id)
            .all()
        )

    def list_for_test(self, test_id: int) -> List[TestAttempt]:
        """Every attempt at a test with its student loaded, newest first."""
        return (
            self.db.query(TestAttempt)
            .options(joinedload(TestAttempt.student))
            .filter(TestAttempt.test_id == test_id)
            .order_by(TestAttempt.started_at.desc(), TestAttempt.id.desc())
            .all()
        )

    def add(self, attempt: TestAttempt) -> TestAttempt:
        """Stage a new attempt and flush to obtain its id.

        Raises IntegrityError when another in-progress attempt for the same
        (test, student) exists.
        """
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def increment_violation_counters(self, attempt_id: int, violation_type: str) -> int:
        """
        Bump total_violations and the type-specific counter in SQL.

        Returns the number of rows updated (0 if the attempt is gone).
        """
        column_name = counter_for_violation(violation_type)
        column = getattr(TestAttempt, column_name)
        result = self.db.execute(
            update(TestAttempt)
            .where(TestAttempt.id == attempt_id)
            .values(
                {
                    TestAttempt.total_violations: TestAttempt.total_violations + 1,
                    column: column + 1,
                }
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
