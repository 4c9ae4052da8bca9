"""
Repositories: the persistence boundary used by the services.

Repositories stage and flush changes but never commit; the calling service
owns the transaction.
"""
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .answers import AnswerRepository
from .attempts import AttemptRepository, counter_for_violation
from .catalog import QuestionRepository, TestRepository
from .certificates import CertificateRepository
from .violations import ViolationRepository


@dataclass
class Repositories:
    """All repositories bound to one session."""

    db: Session
    tests: TestRepository
    questions: QuestionRepository
    attempts: AttemptRepository
    answers: AnswerRepository
    violations: ViolationRepository
    certificates: CertificateRepository

    @classmethod
    def from_session(cls, db: Session) -> "Repositories":
        return cls(
            db=db,
            tests=TestRepository(db),
            questions=QuestionRepository(db),
            attempts=AttemptRepository(db),
            answers=AnswerRepository(db),
            violations=ViolationRepository(db),
            certificates=CertificateRepository(db),
        )


__all__ = [
    "Repositories",
    "AnswerRepository",
    "AttemptRepository",
    "QuestionRepository",
    "TestRepository",
    "CertificateRepository",
    "ViolationRepository",
    "counter_for_violation",
]
