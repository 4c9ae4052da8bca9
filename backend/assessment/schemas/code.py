"""
Pydantic schemas for code execution endpoints.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from assessment.core.error_responses import ErrorMessages
from assessment.schemas.attempts import MAX_CODE_LENGTH


class ExecuteCodeRequest(BaseModel):
    """Run code once with the given stdin."""

    code: str = Field(..., max_length=MAX_CODE_LENGTH)
    language: str = Field("python", max_length=30)
    input: Optional[str] = Field("", max_length=MAX_CODE_LENGTH)

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError(ErrorMessages.EMPTY_CODE)
        return v


class ExecuteCodeResponse(BaseModel):
    success: bool = Field(..., description="True when the program ran without error")
    output: str
    error: Optional[str] = None
    timed_out: bool = False
    exit_code: Optional[int] = None
    duration_ms: float = 0.0


class TestCaseRequest(BaseModel):
    __test__ = False  # not a pytest test class

    input: str = ""
    expected_output: str = ""
    points: float = Field(1.0, gt=0)


class RunTestsRequest(BaseModel):
    """Run code against a list of test cases."""

    code: str = Field(..., max_length=MAX_CODE_LENGTH)
    language: str = Field("python", max_length=30)
    test_cases: List[TestCaseRequest] = Field(..., min_length=1)

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError(ErrorMessages.EMPTY_CODE)
        return v


class TestCaseResultResponse(BaseModel):
    __test__ = False  # not a pytest test class

    input: str
    expected_output: str
    actual_output: str
    passed: bool
    error: Optional[str] = None
    timed_out: bool = False
    duration_ms: float = 0.0
    points: float = 1.0


class RunTestsResponse(BaseModel):
    results: List[TestCaseResultResponse]
    passed_count: int
    total_count: int
    all_passed: bool
