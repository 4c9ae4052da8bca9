"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from assessment.api.v1 import attempts, certificates, code, health, violations

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(attempts.router, prefix="/attempts", tags=["attempts"])
api_router.include_router(
    violations.router, prefix="/violations", tags=["violations"]
)
api_router.include_router(code.router, prefix="/code", tags=["code"])
api_router.include_router(
    certificates.router, prefix="/certificates", tags=["certificates"]
)
