"""
Request middleware for the health service: error envelopes and request logging.

Provides:
    • JSON error envelope for error responses that carry no body
      (unmatched routes, disallowed methods)
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • Structured log entry per request
"""

from __future__ import annotations

import logging
import time
import uuid
from http import HTTPStatus
from typing import Tuple

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.errors import error_body
from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

FALLBACK_ERRORS = {
    404: ("not_found", "The requested resource was not found"),
    405: ("method_not_allowed", "The HTTP method is not allowed for this resource"),
    500: ("internal_server_error", "An internal server error occurred"),
}

# Headers that describe the discarded body
_BODY_HEADERS = ("content-length", "content-type", "content-encoding", "transfer-encoding")


def fallback_error(status_code: int) -> Tuple[str, str]:
    """Envelope (tag, message) for a bare error response."""
    if status_code in FALLBACK_ERRORS:
        return FALLBACK_ERRORS[status_code]
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = ""
    return "error", f"An error occurred: {phrase or 'Unknown error'}"


def needs_envelope(response: Response) -> bool:
    return response.status_code >= 400 and "content-type" not in response.headers


class ErrorEnvelopeMiddleware(BaseHTTPMiddleware):
    """
    Give every bodiless 4xx/5xx response the standard JSON envelope.

    Responses below 400, and error responses that already declare a
    content type, pass through untouched.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        if not needs_envelope(response):
            return response

        # Drain whatever the inner app streamed before replacing it
        body_iterator = getattr(response, "body_iterator", None)
        if body_iterator is not None:
            async for _ in body_iterator:
                pass

        tag, message = fallback_error(response.status_code)
        headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() not in _BODY_HEADERS
        }
        return JSONResponse(
            status_code=response.status_code,
            content=error_body(tag, message),
            headers=headers,
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with timing, inject correlation ID.

    Request log entry includes:
        - method, path, status_code
        - duration_ms
        - client IP
        - request_id (also returned in X-Request-ID response header)

    status_code, duration_ms and endpoint go out as record extras, which
    JSONFormatter lifts into top-level fields. 4xx/5xx lines (a 404 from an
    unmatched path, a 500 from a database_error) log at WARNING, the rest
    at INFO. A handler exception that escapes every error handler is
    logged as a 500 and re-raised.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, duration_ms, client_ip,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            log_level,
            "%s %s → %d (%.1fms) [%s]",
            request.method, path, response.status_code,
            duration_ms, client_ip,
            extra={
                "duration_ms": duration_ms,
                "status_code": response.status_code,
                "endpoint": path,
            },
        )

        set_request_context()

        return response
