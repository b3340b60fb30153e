"""Route table for the service."""

from __future__ import annotations

from fastapi import APIRouter

from backend.app.api import handlers
from backend.app.api.schemas import HealthResponse
from backend.app.core.errors import ErrorResponse


def create_router() -> APIRouter:
    router = APIRouter()
    router.add_api_route(
        "/health",
        handlers.health_check,
        methods=["GET"],
        response_model=HealthResponse,
        tags=["health"],
    )
    router.add_api_route(
        "/error",
        handlers.example_error,
        methods=["GET"],
        responses={400: {"model": ErrorResponse}},
        tags=["diagnostics"],
    )
    return router
