"""
Tests for application wiring: middleware and exception handlers.
"""
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from assessment.core.exceptions import (
    AttemptLimitExceeded,
    PersistenceError,
    SandboxExecutionError,
)


@asynccontextmanager
async def _no_lifespan(app):
    yield


@pytest.fixture
def failing_client():
    """A fresh app with routes that raise, and server exceptions turned into responses."""
    from assessment.main import create_application

    test_app = create_application()
    test_app.router.lifespan_context = _no_lifespan

    @test_app.get("/boom/persistence")
    def persistence():
        raise PersistenceError("submit attempt", OperationalError("UPDATE", {}, Exception("gone")))

    @test_app.get("/boom/limit")
    def limit():
        raise AttemptLimitExceeded("No attempts left.", max_attempts=1)

    @test_app.get("/boom/sandbox")
    def sandbox():
        raise SandboxExecutionError("Failed to start process")

    @test_app.get("/boom/unhandled")
    def unhandled():
        raise RuntimeError("secret internals")

    with TestClient(test_app, raise_server_exceptions=False) as test_client:
        yield test_client


def test_root(client):
    body = client.get("/").json()
    assert body["docs"] == "/v1/docs"
    assert "version" in body


def test_request_id_is_echoed(client):
    response = client.get("/v1/ping", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"


def test_request_id_is_generated(client):
    assert client.get("/v1/ping").headers["X-Request-ID"]


def test_persistence_error_is_transient_failure(failing_client):
    response = failing_client.get("/boom/persistence")

    assert response.status_code == 503
    assert response.json() == {
        "detail": "The service is temporarily unavailable. Please try again later."
    }


def test_domain_error_status_mapping(failing_client):
    response = failing_client.get("/boom/limit")
    assert response.status_code == 403
    assert response.json() == {"detail": "No attempts left."}

    assert failing_client.get("/boom/sandbox").status_code == 500


def test_unhandled_exception_hides_details(failing_client):
    response = failing_client.get("/boom/unhandled")

    assert response.status_code == 500
    body = response.json()
    assert body["detail"] == "Internal server error"
    assert body["error_id"]
    assert "secret" not in response.text


def test_unknown_route_uses_http_handler(client):
    response = client.get("/v1/nowhere")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}
