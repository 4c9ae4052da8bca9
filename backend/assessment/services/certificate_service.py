"""
Certificate eligibility and issuance.

A submitted attempt qualifies when its live percentage reaches the test's
passing score (``DEFAULT_PASSING_SCORE`` when unset). At most one active
certificate exists per attempt; the partial unique index
``uq_certificates_active_attempt`` settles concurrent evaluations.
"""
import logging
import secrets
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment.core.config import settings
from assessment.core.datetime_utils import epoch_millis, utc_now
from assessment.core.db_error_handling import handle_db_error
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import NotFoundError
from assessment.core.graceful_failure import graceful_failure
from assessment.core.scoring import compute_score
from assessment.models import AttemptStatus, Certificate, TestAttempt
from assessment.observability import metrics
from assessment.repositories import Repositories

logger = logging.getLogger(__name__)

ALREADY_ISSUED = "Certificate already issued"
NOT_SUBMITTED = "Attempt has not been submitted"


@dataclass
class EligibilityResult:
    qualifies: bool
    percentage: Optional[int]
    passing_score: int
    reason: str
    certificate: Optional[Certificate] = None


@dataclass
class AutoIssueReport:
    evaluated: int = 0
    issued: List[Certificate] = field(default_factory=list)
    failed: int = 0


def generate_certificate_code(test_id: int, student_id: int) -> str:
    """CERT-{test}-{student}-{epoch ms}-{8 uppercase hex}."""
    return f"CERT-{test_id}-{student_id}-{epoch_millis()}-{secrets.token_hex(4).upper()}"


class CertificateService:
    def __init__(self, repos: Repositories):
        self.repos = repos
        self.db = repos.db

    def passing_score_for(self, attempt: TestAttempt) -> int:
        test = self.repos.tests.get(attempt.test_id)
        if test is None or test.passing_score is None:
            return settings.DEFAULT_PASSING_SCORE
        return test.passing_score

    def evaluate(self, attempt_id: int) -> EligibilityResult:
        """
        Issue a certificate for the attempt if it qualifies.

        Idempotent: re-evaluating an attempt that already holds an active
        certificate returns that certificate with ``qualifies=False``.
        """
        with handle_db_error(self.db, "evaluate certificate"):
            attempt = self.repos.attempts.get(attempt_id)
            if attempt is None:
                raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)

            passing_score = self.passing_score_for(attempt)
            if attempt.status != AttemptStatus.SUBMITTED:
                return EligibilityResult(False, None, passing_score, NOT_SUBMITTED)

            existing = self.repos.certificates.find_active_for_attempt(attempt.id)
            if existing is not None:
                return EligibilityResult(
                    False, existing.percentage, passing_score, ALREADY_ISSUED, existing
                )

            summary = compute_score(attempt, self.repos.answers, self.repos.questions)
            if not summary.passes(passing_score):
                return EligibilityResult(
                    False,
                    summary.percentage,
                    passing_score,
                    f"Score {summary.percentage}% is below the passing score of {passing_score}%",
                )

            certificate = Certificate(
                test_id=attempt.test_id,
                student_id=attempt.student_id,
                attempt_id=attempt.id,
                certificate_code=generate_certificate_code(
                    attempt.test_id, attempt.student_id
                ),
                score=summary.score,
                percentage=summary.percentage,
                issued_at=utc_now(),
                is_active=True,
            )
            try:
                self.repos.certificates.add(certificate)
            except IntegrityError:
                self.db.rollback()
                winner = self.repos.certificates.find_active_for_attempt(attempt_id)
                if winner is None:
                    raise
                logger.info(
                    "Concurrent certificate evaluation; keeping existing certificate",
                    extra={"attempt_id": attempt_id},
                )
                return EligibilityResult(
                    False, winner.percentage, passing_score, ALREADY_ISSUED, winner
                )
            self.db.commit()
            self.db.refresh(certificate)

        logger.info(
            f"Issued certificate {certificate.certificate_code} "
            f"({summary.percentage}% >= {passing_score}%)",
            extra={"attempt_id": attempt_id},
        )
        metrics.record_certificate_issued(certificate.test_id)
        return EligibilityResult(
            True, summary.percentage, passing_score, "Certificate issued", certificate
        )

    def auto_issue(self, test_id: Optional[int] = None) -> AutoIssueReport:
        """Evaluate every submitted attempt (optionally of one test)."""
        report = AutoIssueReport()
        attempt_ids = [a.id for a in self.repos.attempts.list_submitted(test_id)]
        for attempt_id in attempt_ids:
            report.evaluated += 1
            ok = False
            with graceful_failure(
                "evaluate certificate", logger, context={"attempt_id": attempt_id}
            ):
                result = self.evaluate(attempt_id)
                if result.qualifies and result.certificate is not None:
                    report.issued.append(result.certificate)
                ok = True
            if not ok:
                report.failed += 1

        logger.info(
            f"Certificate sweep: {report.evaluated} attempts evaluated, "
            f"{len(report.issued)} issued, {report.failed} failed"
        )
        return report

    def verify(self, certificate_code: str) -> Certificate:
        certificate = self.repos.certificates.get_active_by_code(certificate_code)
        if certificate is None:
            raise NotFoundError(ErrorMessages.CERTIFICATE_NOT_FOUND)
        return certificate

    def list_for_student(self, student_id: int) -> List[Certificate]:
        return self.repos.certificates.list_for_student(student_id)


def evaluate_certificate_in_background(
    attempt_id: int, *, session_factory: Callable[[], Session]
) -> None:
    """Post-submit hook; pair with ``safe_background_task``."""
    with session_factory() as db:
        result = CertificateService(Repositories.from_session(db)).evaluate(attempt_id)
        logger.info(
            f"Certificate evaluation: {result.reason}", extra={"attempt_id": attempt_id}
        )
