"""
Models package for the assessment engine.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    User,
    Test,
    Question,
    TestAttempt,
    StudentAnswer,
    TestViolation,
    Certificate,
    UserRole,
    QuestionType,
    PlatformRestriction,
    AttemptStatus,
    ViolationType,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "User",
    "Test",
    "Question",
    "TestAttempt",
    "StudentAnswer",
    "TestViolation",
    "Certificate",
    "UserRole",
    "QuestionType",
    "PlatformRestriction",
    "AttemptStatus",
    "ViolationType",
]
