"""
Health check and status endpoints.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from assessment.core.config import settings
from assessment.core.datetime_utils import utc_now
from assessment.models import get_db
from assessment.services.isolation import isolation_backend
from assessment.services.sandbox import supported_languages

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Reports database reachability, the languages the sandbox can run and
    the isolation backend it runs them under (null: code execution is off).
    Answers 503 when the database is unreachable.
    """
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Health check database ping failed: {e}")
        database = "unavailable"

    backend = isolation_backend()
    body = {
        "status": "healthy" if database == "ok" else "degraded",
        "timestamp": utc_now().isoformat(),
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
        "sandbox_languages": supported_languages(),
        "sandbox_isolation": backend.name if backend else None,
    }
    return JSONResponse(status_code=200 if database == "ok" else 503, content=body)


@router.get("/ping")
async def ping():
    """
    Simple ping endpoint for basic connectivity testing.
    """
    return {"message": "pong"}
