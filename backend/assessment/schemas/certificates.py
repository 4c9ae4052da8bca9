"""
Pydantic schemas for certificate endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class EvaluateCertificateRequest(BaseModel):
    attempt_id: int = Field(..., gt=0)


class AutoIssueRequest(BaseModel):
    test_id: Optional[int] = Field(None, gt=0, description="Limit the sweep to one test")


class CertificateResponse(BaseModel):
    id: int
    test_id: int
    student_id: int
    attempt_id: int
    certificate_code: str
    score: Optional[float] = None
    percentage: Optional[int] = None
    issued_at: datetime
    is_active: bool
    verify_url: Optional[str] = None

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class EligibilityResponse(BaseModel):
    qualifies: bool = Field(..., description="True only when a certificate was issued now")
    percentage: Optional[int] = None
    passing_score: int
    reason: str
    certificate: Optional[CertificateResponse] = None


class AutoIssueResponse(BaseModel):
    evaluated: int
    issued_count: int
    failed: int
    certificates: List[CertificateResponse]


class CertificateVerificationResponse(BaseModel):
    valid: bool = True
    certificate: CertificateResponse
    test_title: Optional[str] = None
    student_name: Optional[str] = None
