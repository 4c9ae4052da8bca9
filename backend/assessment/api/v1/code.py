"""
Code execution endpoints used by the editor's "Run" and "Run tests" buttons.
"""
from fastapi import APIRouter, Depends

from assessment.api.v1.dependencies import get_sandbox_executor
from assessment.core.auth import get_current_user
from assessment.core.config import settings
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import AssessmentValidationError
from assessment.models import User
from assessment.schemas.code import (
    ExecuteCodeRequest,
    ExecuteCodeResponse,
    RunTestsRequest,
    RunTestsResponse,
)
from assessment.services.sandbox import SandboxExecutor, TestCase

router = APIRouter()


@router.post("/execute", response_model=ExecuteCodeResponse)
async def execute_code(
    request: ExecuteCodeRequest,
    current_user: User = Depends(get_current_user),
    executor: SandboxExecutor = Depends(get_sandbox_executor),
):
    """
    Run code once with the given stdin.

    Program errors, timeouts and unsupported languages are reported in the
    body with ``success=false``.
    """
    outcome = await executor.run(request.code, request.language, request.input or "")
    return ExecuteCodeResponse(
        success=outcome.succeeded,
        output=outcome.output,
        error=outcome.error,
        timed_out=outcome.timed_out,
        exit_code=outcome.exit_code,
        duration_ms=outcome.duration_ms,
    )


@router.post("/test", response_model=RunTestsResponse)
async def run_test_cases(
    request: RunTestsRequest,
    current_user: User = Depends(get_current_user),
    executor: SandboxExecutor = Depends(get_sandbox_executor),
):
    """Run code against test cases; each case runs in its own process."""
    if len(request.test_cases) > settings.SANDBOX_MAX_TEST_CASES:
        raise AssessmentValidationError(
            ErrorMessages.too_many_test_cases(settings.SANDBOX_MAX_TEST_CASES)
        )

    report = await executor.run_test_cases(
        request.code,
        request.language,
        [
            TestCase(input=tc.input, expected_output=tc.expected_output, points=tc.points)
            for tc in request.test_cases
        ],
    )
    return RunTestsResponse(**report.to_dict())
