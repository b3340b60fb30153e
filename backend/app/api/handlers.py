"""
Route handlers — health probe and a diagnostic error endpoint.

Both handlers are read-only. The pool is injected per request through
``get_pool``; nothing here touches module-level state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.api.schemas import DatabaseStatus, HealthResponse
from backend.app.core.database import get_pool, health_check as probe_pool
from backend.app.core.errors import AppError

logger = logging.getLogger(__name__)

EXAMPLE_ERROR_MESSAGE = "This is an example validation error"


async def health_check(pool: AsyncEngine = Depends(get_pool)) -> HealthResponse:
    """
    Report service liveness.

    Always answers 200; a degraded database shows up as
    ``database: "disconnected"`` rather than as an error status.
    """
    if await probe_pool(pool):
        database = DatabaseStatus.CONNECTED
    else:
        logger.warning("Health check: database disconnected")
        database = DatabaseStatus.DISCONNECTED

    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=database,
    )


async def example_error() -> None:
    """Always fails with a validation error."""
    raise AppError.validation(EXAMPLE_ERROR_MESSAGE)
