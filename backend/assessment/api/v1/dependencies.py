"""
Shared FastAPI dependencies for the v1 endpoints.

Repositories and services are built per request from the request's
session. Background work receives the session factory instead, since the
request session is closed by the time it runs. Tests override
``get_db`` and ``get_session_factory``.
"""
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from assessment.models import SessionLocal, get_db
from assessment.repositories import Repositories
from assessment.services.answer_service import AnswerService
from assessment.services.attempt_service import AttemptService
from assessment.services.certificate_service import CertificateService
from assessment.services.sandbox import SandboxExecutor, sandbox_executor
from assessment.services.violation_tracker import ViolationTracker


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_repositories(db: Session = Depends(get_db)) -> Repositories:
    return Repositories.from_session(db)


def get_attempt_service(repos: Repositories = Depends(get_repositories)) -> AttemptService:
    return AttemptService(repos)


def get_answer_service(repos: Repositories = Depends(get_repositories)) -> AnswerService:
    return AnswerService(repos)


def get_violation_tracker(repos: Repositories = Depends(get_repositories)) -> ViolationTracker:
    return ViolationTracker(repos)


def get_certificate_service(
    repos: Repositories = Depends(get_repositories),
) -> CertificateService:
    return CertificateService(repos)


def get_sandbox_executor() -> SandboxExecutor:
    return sandbox_executor
