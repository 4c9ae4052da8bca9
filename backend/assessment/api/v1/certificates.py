"""
Certificate endpoints: eligibility evaluation, sweeps and verification.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from assessment.api.v1.dependencies import get_certificate_service, get_repositories
from assessment.core.auth import get_current_user, is_staff, require_staff
from assessment.core.config import settings
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import NotFoundError
from assessment.models import Certificate, User
from assessment.repositories import Repositories
from assessment.schemas.certificates import (
    AutoIssueRequest,
    AutoIssueResponse,
    CertificateResponse,
    CertificateVerificationResponse,
    EligibilityResponse,
    EvaluateCertificateRequest,
)
from assessment.services.certificate_service import CertificateService

router = APIRouter()


def certificate_response(certificate: Certificate) -> CertificateResponse:
    response = CertificateResponse.model_validate(certificate)
    base = settings.CERTIFICATE_VERIFY_BASE_URL.rstrip("/")
    response.verify_url = f"{base}/verify/{certificate.certificate_code}"
    return response


def _optional_certificate(certificate: Optional[Certificate]) -> Optional[CertificateResponse]:
    return certificate_response(certificate) if certificate is not None else None


@router.post("/evaluate", response_model=EligibilityResponse)
def evaluate_certificate(
    request: EvaluateCertificateRequest,
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
    repos: Repositories = Depends(get_repositories),
):
    """Evaluate (and issue, if it qualifies) the certificate for an attempt."""
    attempt = repos.attempts.get(request.attempt_id)
    if attempt is None or (
        attempt.student_id != current_user.id and not is_staff(current_user)
    ):
        raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)

    result = service.evaluate(request.attempt_id)
    return EligibilityResponse(
        qualifies=result.qualifies,
        percentage=result.percentage,
        passing_score=result.passing_score,
        reason=result.reason,
        certificate=_optional_certificate(result.certificate),
    )


@router.post("/auto-issue", response_model=AutoIssueResponse)
def auto_issue_certificates(
    request: AutoIssueRequest,
    current_user: User = Depends(require_staff),
    service: CertificateService = Depends(get_certificate_service),
):
    """Sweep submitted attempts and issue every certificate that is due."""
    report = service.auto_issue(request.test_id)
    return AutoIssueResponse(
        evaluated=report.evaluated,
        issued_count=len(report.issued),
        failed=report.failed,
        certificates=[certificate_response(c) for c in report.issued],
    )


@router.get("/mine", response_model=list[CertificateResponse])
def list_my_certificates(
    current_user: User = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
):
    return [certificate_response(c) for c in service.list_for_student(current_user.id)]


@router.get("/verify/{certificate_code}", response_model=CertificateVerificationResponse)
def verify_certificate(
    certificate_code: str,
    service: CertificateService = Depends(get_certificate_service),
):
    """Public lookup of an active certificate by its code."""
    certificate = service.verify(certificate_code)
    return CertificateVerificationResponse(
        certificate=certificate_response(certificate),
        test_title=certificate.test.title if certificate.test else None,
        student_name=certificate.student.name if certificate.student else None,
    )
