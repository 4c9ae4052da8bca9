"""
FastAPI authentication dependencies.
"""
from typing import Callable

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from assessment.models import User, UserRole, get_db
from .error_responses import ErrorMessages, raise_forbidden, raise_unauthorized
from .security import decode_token, verify_token_type

# HTTP Bearer token scheme
security = HTTPBearer()


def _decode_and_validate_token(token: str) -> int:
    """
    Decode and validate an access token, returning the user_id.

    Raises:
        HTTPException: 401 if token is invalid, wrong type, or missing user_id
    """
    payload = decode_token(token)
    if payload is None:
        raise_unauthorized(ErrorMessages.INVALID_TOKEN)

    if not verify_token_type(payload, "access"):
        raise_unauthorized(ErrorMessages.INVALID_TOKEN)

    user_id = payload.get("user_id")
    if user_id is None:
        raise_unauthorized(ErrorMessages.INVALID_TOKEN_PAYLOAD)

    return user_id


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Get the current authenticated user from the bearer token.

    Raises:
        HTTPException: 401 if token is invalid or user not found
    """
    user_id = _decode_and_validate_token(credentials.credentials)
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise_unauthorized(ErrorMessages.USER_NOT_FOUND_AUTH)
    return user


def is_staff(user: User) -> bool:
    """Teachers and admins may review and manage any attempt."""
    return user.role in (UserRole.TEACHER, UserRole.ADMIN)


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """
    Dependency factory restricting an endpoint to the given roles.

    Usage:
        @router.get("/x")
        def x(user: User = Depends(require_roles(UserRole.TEACHER, UserRole.ADMIN))):
            ...
    """
    allowed = set(roles)

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise_forbidden(ErrorMessages.ROLE_NOT_PERMITTED)
        return current_user

    return dependency


require_staff = require_roles(UserRole.TEACHER, UserRole.ADMIN)
