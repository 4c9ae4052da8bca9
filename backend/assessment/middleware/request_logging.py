"""
Request/response logging middleware.

Every request gets a correlation id (taken from ``X-Request-ID`` or
generated), which is attached to all log records emitted while the request
is handled and echoed back in the response headers.
"""
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from assessment.core.logging_config import request_id_context
from assessment.observability import metrics

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log incoming requests and their responses.

    Client-reported monitoring events (``/violation``) are frequent and
    low-value individually, so their completions are logged at DEBUG.
    """

    QUIET_PATH_SUFFIXES = ("/violation", "/health", "/ping")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_context.set(request_id)

        start_time = time.time()

        user_identifier = "anonymous"
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            # Never log the full token
            user_identifier = f"token:{auth_header[7:17]}..."

        method = request.method
        path = str(request.url.path)
        client_host = request.client.host if request.client else "unknown"
        quiet = path.endswith(self.QUIET_PATH_SUFFIXES)

        logger.log(
            logging.DEBUG if quiet else logging.INFO,
            "Incoming request",
            extra={
                "method": method,
                "path": path,
                "client_host": client_host,
                "user_identifier": user_identifier,
            },
        )

        response = await call_next(request)

        duration = time.time() - start_time
        status_code = response.status_code
        response.headers["X-Request-ID"] = request_id

        route = request.scope.get("route")
        metrics.record_http_request(
            method=method,
            path=getattr(route, "path", path),
            status_code=status_code,
            duration=duration,
        )

        extra_fields = {
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 2),
            "client_host": client_host,
            "user_identifier": user_identifier,
        }

        if status_code >= 500:
            logger.error("Server error response", extra=extra_fields)
        elif status_code >= 400:
            logger.warning("Client error response", extra=extra_fields)
        elif quiet:
            logger.debug("Request completed", extra=extra_fields)
        else:
            logger.info("Request completed", extra=extra_fields)

        return response
