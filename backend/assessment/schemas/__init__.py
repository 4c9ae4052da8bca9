"""
Pydantic schemas for request/response validation.
"""
from .attempts import (
    AttemptResponse,
    AttemptReviewResponse,
    StartAttemptRequest,
    StartAttemptResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    MarkCodeCorrectRequest,
    ViolationRequest,
)
from .code import (
    ExecuteCodeRequest,
    ExecuteCodeResponse,
    RunTestsRequest,
    RunTestsResponse,
)
from .certificates import (
    CertificateResponse,
    EligibilityResponse,
)

__all__ = [
    "AttemptResponse",
    "AttemptReviewResponse",
    "StartAttemptRequest",
    "StartAttemptResponse",
    "SubmitAnswerRequest",
    "SubmitAnswerResponse",
    "SubmitAttemptRequest",
    "SubmitAttemptResponse",
    "MarkCodeCorrectRequest",
    "ViolationRequest",
    "ExecuteCodeRequest",
    "ExecuteCodeResponse",
    "RunTestsRequest",
    "RunTestsResponse",
    "CertificateResponse",
    "EligibilityResponse",
]
