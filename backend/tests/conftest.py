"""
Pytest configuration and shared fixtures for testing.
"""
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from assessment.api.v1.dependencies import get_session_factory
from assessment.core.config import settings
from assessment.core.security import create_access_token
from assessment.main import app
from assessment.models import (
    Base,
    Question,
    QuestionType,
    Test,
    User,
    UserRole,
    get_db,
)
from assessment.models.base import build_engine
from assessment.services.isolation import isolation_backend


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that require live external services",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# Tests that execute code need a working isolation backend; without one the
# sandbox refuses to run anything.
requires_isolation = pytest.mark.skipif(
    isolation_backend() is None,
    reason="no sandbox isolation backend (bwrap, or unshare with user namespaces)",
)


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests: no Sentry, no schema creation on the real DB."""
    yield


app.router.lifespan_context = _test_lifespan


# Use SQLite for tests. The path is relative to this file so the .db lands
# inside tests/ regardless of the working directory. A file (not :memory:)
# is needed because background tasks open their own sessions.
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database (for background work)."""
    return TestingSessionLocal


@pytest.fixture(scope="function")
def client(db_session, monkeypatch):
    """
    Create a test client with database dependency overrides.

    Server-side judging is disabled by default; tests that exercise it
    re-enable ``SANDBOX_AUTO_JUDGE`` explicitly.
    """
    monkeypatch.setattr(settings, "SANDBOX_AUTO_JUDGE", False)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db_session, email: str, name: str, role: UserRole) -> User:
    user = User(email=email, name=name, role=role)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def student(db_session):
    return _make_user(db_session, "student@example.com", "Sam Student", UserRole.STUDENT)


@pytest.fixture
def other_student(db_session):
    return _make_user(db_session, "other@example.com", "Olu Other", UserRole.STUDENT)


@pytest.fixture
def teacher(db_session):
    return _make_user(db_session, "teacher@example.com", "Tia Teacher", UserRole.TEACHER)


@pytest.fixture
def other_teacher(db_session):
    return _make_user(db_session, "colleague@example.com", "Cal Colleague", UserRole.TEACHER)


@pytest.fixture
def admin(db_session):
    return _make_user(db_session, "admin@example.com", "Ada Admin", UserRole.ADMIN)


def headers_for(user: User) -> dict:
    access_token = create_access_token({"user_id": user.id})
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def auth_headers(student):
    """
    Create authentication headers for the student.
    """
    return headers_for(student)


@pytest.fixture
def teacher_headers(teacher):
    return headers_for(teacher)


@pytest.fixture
def other_headers(other_student):
    return headers_for(other_student)


def make_test(db_session, *, questions, **test_fields) -> Test:
    """Create a test with the given question dicts (order follows the list)."""
    test = Test(title=test_fields.pop("title", "Sample test"), **test_fields)
    db_session.add(test)
    db_session.flush()
    for index, fields in enumerate(questions, start=1):
        db_session.add(
            Question(
                test_id=test.id,
                order_number=fields.pop("order_number", index),
                question_text=fields.pop("question_text", f"Question {index}"),
                **fields,
            )
        )
    db_session.commit()
    db_session.refresh(test)
    return test


@pytest.fixture
def mixed_test(db_session):
    """
    A 40-point test: single-choice (10), free-text (15), code (15).

    The code question echoes its input doubled.
    """
    return make_test(
        db_session,
        title="Mixed test",
        questions=[
            dict(
                question_type=QuestionType.SINGLE_CHOICE,
                options=["3", "4", "5"],
                correct_answer="4",
                points=10,
                explanation="2 + 2 = 4",
            ),
            dict(question_type=QuestionType.FREE_TEXT, points=15),
            dict(
                question_type=QuestionType.CODE,
                points=15,
                test_cases=[
                    {"input": "2\n", "expected_output": "4"},
                    {"input": "5\n", "expected_output": "10"},
                ],
            ),
        ],
    )


def questions_by_type(test: Test) -> dict:
    return {QuestionType(q.question_type): q for q in test.questions}
