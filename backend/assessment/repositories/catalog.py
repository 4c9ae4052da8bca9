"""
Read-only access to tests and questions.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from assessment.models import Question, Test


class TestRepository:
    """Tests are configured elsewhere; this service only reads them."""

    __test__ = False  # not a pytest test class

    def __init__(self, db: Session):
        self.db = db

    def get(self, test_id: int) -> Optional[Test]:
        return self.db.get(Test, test_id)


class QuestionRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, question_id: int) -> Optional[Question]:
        return self.db.get(Question, question_id)

    def list_for_test(self, test_id: int) -> List[Question]:
        """All questions of a test in display order."""
        return (
            self.db.query(Question)
            .filter(Question.test_id == test_id)
            .order_by(Question.order_number, Question.id)
            .all()
        )
