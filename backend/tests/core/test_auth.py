"""Tests for token handling and role checks."""
from datetime import timedelta

from assessment.core.auth import is_staff
from assessment.core.security import create_access_token, decode_token, verify_token_type
from assessment.models import User, UserRole


def test_access_token_round_trip():
    token = create_access_token({"user_id": 42})
    payload = decode_token(token)

    assert payload["user_id"] == 42
    assert verify_token_type(payload, "access")
    assert not verify_token_type(payload, "refresh")


def test_expired_token_is_rejected():
    token = create_access_token({"user_id": 1}, expires_delta=timedelta(seconds=-5))
    assert decode_token(token) is None


def test_garbage_token_is_rejected():
    assert decode_token("not-a-jwt") is None


def test_staff_roles():
    assert is_staff(User(role=UserRole.TEACHER))
    assert is_staff(User(role=UserRole.ADMIN))
    assert not is_staff(User(role=UserRole.STUDENT))
