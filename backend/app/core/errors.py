"""
Centralised error handling — application error type + FastAPI handlers.

Provides:
    • AppError, a closed set of error kinds raised by route handlers
    • A single JSON error envelope: {"error": <tag>, "message": <text>}
    • Exception handlers that route every failure path into that envelope

Usage:
    from backend.app.core.errors import AppError, register_error_handlers

    raise AppError.not_found("Widget 42 does not exist")
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

logger = logging.getLogger(__name__)

DATABASE_ERROR_MESSAGE = "A database error occurred"
INTERNAL_ERROR_MESSAGE = "An internal server error occurred"


class ErrorResponse(BaseModel):
    """The only error body shape returned to clients."""

    error: str
    message: str


class AppErrorKind(str, Enum):
    DATABASE = "database"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class ErrorTriple(NamedTuple):
    status_code: int
    error: str
    message: str


class AppError(Exception):
    """
    Error raised by request handlers.

    Build one through the named constructors; ``kind`` selects the
    HTTP status and tag, ``message`` is client-facing except for
    DATABASE, whose ``cause`` is only ever logged.
    """

    def __init__(
        self,
        kind: AppErrorKind,
        message: str = "",
        *,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message or str(cause or kind.value))
        self.kind = kind
        self.message = message
        self.cause = cause

    @classmethod
    def database(cls, cause: BaseException) -> "AppError":
        return cls(AppErrorKind.DATABASE, cause=cause)

    @classmethod
    def validation(cls, message: str) -> "AppError":
        return cls(AppErrorKind.VALIDATION, message)

    @classmethod
    def not_found(cls, message: str) -> "AppError":
        return cls(AppErrorKind.NOT_FOUND, message)

    @classmethod
    def internal(cls, message: str) -> "AppError":
        return cls(AppErrorKind.INTERNAL, message)


# ═══════════════════════════════════════════════════════════════════════════
# Error → Response mapping
# ═══════════════════════════════════════════════════════════════════════════

def to_response(error: AppError) -> ErrorTriple:
    """Map an AppError to (status, tag, message). 500-class kinds are logged."""
    kind = error.kind
    if kind is AppErrorKind.DATABASE:
        logger.error("Database error: %s", error.cause, extra={"error_type": "database_error"})
        return ErrorTriple(500, "database_error", DATABASE_ERROR_MESSAGE)
    if kind is AppErrorKind.VALIDATION:
        return ErrorTriple(400, "validation_error", error.message)
    if kind is AppErrorKind.NOT_FOUND:
        return ErrorTriple(404, "not_found", error.message)
    if kind is AppErrorKind.INTERNAL:
        logger.error(
            "Internal server error: %s", error.message,
            extra={"error_type": "internal_server_error"},
        )
        return ErrorTriple(500, "internal_server_error", error.message)
    raise AssertionError(f"unhandled error kind: {kind!r}")


def error_body(tag: str, message: str) -> dict:
    return ErrorResponse(error=tag, message=message).model_dump()


def build_error_response(error: AppError) -> JSONResponse:
    """Build the JSON envelope response for an AppError."""
    status_code, tag, message = to_response(error)
    return JSONResponse(status_code=status_code, content=error_body(tag, message))


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        return build_error_response(exc)

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        return build_error_response(AppError.database(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        )
        return build_error_response(AppError.validation(problems or "Invalid request"))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        # Status and headers only; ErrorEnvelopeMiddleware writes the body
        return Response(status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception on %s %s: %s",
            request.method, request.url.path, exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=error_body("internal_server_error", INTERNAL_ERROR_MESSAGE),
        )
