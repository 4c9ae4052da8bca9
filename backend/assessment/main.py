"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assessment.api.v1.api import api_router
from assessment.core.config import settings
from assessment.core.error_responses import (
    ErrorMessages,
    detail_for_domain_error,
    status_for_domain_error,
)
from assessment.core.exceptions import AssessmentError
from assessment.core.logging_config import setup_logging
from assessment.middleware import RequestLoggingMiddleware
from assessment.models import Base, engine
from assessment.observability import capture_error, init_sentry, metrics

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    On startup initialises Sentry (when configured) and makes sure the
    schema exists.
    """
    init_sentry()

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")

    yield

    engine.dispose()
    logger.info("Application shutting down")


tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "attempts",
        "description": "Attempt lifecycle: start, answer, submit, review, history and teacher reports",
    },
    {
        "name": "violations",
        "description": "Batched integrity violation reporting",
    },
    {
        "name": "code",
        "description": "Sandboxed code execution for code questions",
    },
    {
        "name": "certificates",
        "description": "Certificate eligibility, issuance and public verification",
    },
]


def _serialize_validation_errors(exc: RequestValidationError) -> list:
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
        )
    return errors


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "Attempt lifecycle and scoring engine for an online assessment "
            "platform.\n\n"
            "This API provides:\n"
            "* Starting, resuming and submitting test attempts\n"
            "* Answer recording with auto-grading of single-choice questions\n"
            "* Sandboxed execution and judging of code answers\n"
            "* Integrity monitoring events\n"
            "* Certificate issuance and verification"
        ),
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    # Explicit methods and headers instead of wildcards
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.exception_handler(AssessmentError)
    async def domain_exception_handler(request: Request, exc: AssessmentError):
        """
        Map domain errors raised by the services onto HTTP responses.
        """
        status_code = status_for_domain_error(exc)
        metrics.record_error(exc.__class__.__name__, path=str(request.url.path))

        if status_code >= 500:
            logger.error(
                f"Domain error on {request.method} {request.url.path}: {exc}",
                extra={"error_type": exc.__class__.__name__},
            )
            capture_error(exc, error_type=exc.__class__.__name__)

        return JSONResponse(
            status_code=status_code,
            content={"detail": detail_for_domain_error(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 400:
            metrics.record_error("HTTPException", path=str(request.url.path))

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        metrics.record_error("ValidationError", path=str(request.url.path))

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": _serialize_validation_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions.

        Generates a unique error_id for each exception so a support request
        can be matched to the logged traceback. Internal details never reach
        the client.
        """
        error_id = str(uuid.uuid4())

        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"error_id": error_id},
        )
        metrics.record_error(exc.__class__.__name__, path=str(request.url.path))
        capture_error(exc, error_type=exc.__class__.__name__, error_id=error_id)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": ErrorMessages.INTERNAL_ERROR,
                "error_id": error_id,
            },
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
