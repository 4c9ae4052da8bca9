"""
Database models for the assessment engine.

Tests, questions and users are owned by the catalog side of the platform
and are only read here. Attempts, answers, violations and certificates are
written by this service.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Enum,
    Float,
    UniqueConstraint,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSON
from datetime import datetime, timezone
import enum

from .base import Base
from .types import QuestionIdList


def _value_enum(enum_cls: type[enum.Enum]) -> Enum:
    """Store enum values (not member names) so raw SQL predicates can match them."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
        validate_strings=True,
    )


class UserRole(str, enum.Enum):
    """User role enumeration."""

    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class QuestionType(str, enum.Enum):
    """Question type enumeration."""

    SINGLE_CHOICE = "single_choice"
    FREE_TEXT = "free_text"
    CODE = "code"


class PlatformRestriction(str, enum.Enum):
    """Where a test may be taken."""

    ANY = "any"
    WEB = "web"
    MOBILE = "mobile"


class AttemptStatus(str, enum.Enum):
    """Attempt status enumeration. SUBMITTED is terminal."""

    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class ViolationType(str, enum.Enum):
    """Integrity violation kinds reported by clients."""

    WINDOW_SWITCH = "window_switch"
    TAB_SWITCH = "tab_switch"
    SCREENSHOT_ATTEMPT = "screenshot_attempt"
    PHONE_CALL = "phone_call"
    COPY_PASTE = "copy_paste"
    OTHER = "other"


class User(Base):
    """Identity record; role drives authorization."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200))
    role = Column(_value_enum(UserRole), default=UserRole.STUDENT, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    attempts = relationship("TestAttempt", back_populates="student")
    certificates = relationship("Certificate", back_populates="student")


class Test(Base):
    """Test configuration."""

    __tablename__ = "tests"
    __test__ = False  # not a pytest test class

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    duration_minutes = Column(Integer)
    platform_restriction = Column(String(20), nullable=True)  # any | web | mobile
    allowed_browsers = Column(JSON, nullable=True)  # empty/null means any browser
    max_attempts = Column(Integer, nullable=True)  # null/0 means unlimited
    questions_to_ask = Column(Integer, nullable=True)  # null means all questions
    passing_score = Column(Integer, nullable=True)  # null means DEFAULT_PASSING_SCORE
    show_review_to_students = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    questions = relationship(
        "Question",
        back_populates="test",
        order_by="Question.order_number",
        cascade="all, delete-orphan",
    )
    attempts = relationship("TestAttempt", back_populates="test")

    __table_args__ = (
        CheckConstraint(
            "passing_score IS NULL OR (passing_score >= 0 AND passing_score <= 100)",
            name="ck_tests_passing_score_range",
        ),
    )


class Question(Base):
    """Question belonging to exactly one test; immutable during an attempt."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(
        Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_text = Column(Text, nullable=False)
    question_type = Column(_value_enum(QuestionType), nullable=False)
    options = Column(JSON)  # choices for single_choice, null otherwise
    correct_answer = Column(Text)  # exact-match key for single_choice
    points = Column(Float, default=1.0, nullable=False)
    order_number = Column(Integer, default=0, nullable=False)
    explanation = Column(Text)
    # Code questions: [{"input": str, "expected_output": str, "points": number}]
    test_cases = Column(JSON)

    # Relationships
    test = relationship("Test", back_populates="questions")
    answers = relationship("StudentAnswer", back_populates="question")

    __table_args__ = (
        CheckConstraint("points > 0", name="ck_questions_points_positive"),
        Index("ix_questions_test_order", "test_id", "order_number"),
    )


class TestAttempt(Base):
    """One student's attempt at a test."""

    __tablename__ = "test_attempts"
    __test__ = False  # not a pytest test class

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(
        Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(
        _value_enum(AttemptStatus),
        default=AttemptStatus.IN_PROGRESS,
        nullable=False,
        index=True,
    )
    # Question subset drawn at start; null means every question of the test
    selected_questions = Column(QuestionIdList(), nullable=True)
    platform = Column(String(20))
    browser = Column(String(50))
    device_info = Column(JSON)
    score = Column(Float)
    total_points = Column(Float, default=0, nullable=False)

    total_violations = Column(Integer, default=0, server_default="0", nullable=False)
    window_switches = Column(Integer, default=0, server_default="0", nullable=False)
    screenshot_attempts = Column(Integer, default=0, server_default="0", nullable=False)
    phone_calls = Column(Integer, default=0, server_default="0", nullable=False)
    other_violations = Column(Integer, default=0, server_default="0", nullable=False)

    started_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    submitted_at = Column(DateTime(timezone=True))

    # Relationships
    test = relationship("Test", back_populates="attempts")
    student = relationship("User", back_populates="attempts")
    answers = relationship(
        "StudentAnswer", back_populates="attempt", cascade="all, delete-orphan"
    )
    violations = relationship(
        "TestViolation",
        back_populates="attempt",
        order_by="TestViolation.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_test_attempts_test_student_status", "test_id", "student_id", "status"),
        # At most one in-progress attempt per (test, student)
        Index(
            "uq_test_attempts_one_in_progress",
            "test_id",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )


class StudentAnswer(Base):
    """Latest answer for one question of one attempt."""

    __tablename__ = "student_answers"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer,
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id = Column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    answer = Column(Text)
    code_submission = Column(Text)
    language = Column(String(30))
    is_correct = Column(Boolean, default=False, nullable=False)
    is_flagged = Column(Boolean, default=False, nullable=False)
    points_earned = Column(Float, default=0, nullable=False)
    test_results = Column(JSON)  # per-test-case judging results
    submitted_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    graded_at = Column(DateTime(timezone=True))  # null while awaiting grading

    # Relationships
    attempt = relationship("TestAttempt", back_populates="answers")
    question = relationship("Question", back_populates="answers")

    __table_args__ = (
        UniqueConstraint(
            "attempt_id", "question_id", name="uq_student_answers_attempt_question"
        ),
        CheckConstraint(
            "points_earned >= 0", name="ck_student_answers_points_non_negative"
        ),
    )


class TestViolation(Base):
    """Append-only integrity violation event."""

    __tablename__ = "test_violations"
    __test__ = False  # not a pytest test class

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer,
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    violation_type = Column(String(30), nullable=False)
    details = Column(JSON)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    attempt = relationship("TestAttempt", back_populates="violations")


class Certificate(Base):
    """Completion certificate issued for a qualifying attempt."""

    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(
        Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt_id = Column(
        Integer,
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    certificate_code = Column(String(100), unique=True, nullable=False, index=True)
    score = Column(Float)
    percentage = Column(Integer)
    issued_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    test = relationship("Test")
    student = relationship("User", back_populates="certificates")
    attempt = relationship("TestAttempt")

    __table_args__ = (
        # At most one active certificate per attempt
        Index(
            "uq_certificates_active_attempt",
            "attempt_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )
