"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --port 3000

Or through the console script, which honours SERVER_HOST / SERVER_PORT:
    pool-health-service
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

# ── Core infrastructure ──
from backend.app.core.config import ConfigError, Settings, resolve_settings
from backend.app.core.database import close_pool, create_pool, run_migrations
from backend.app.core.errors import register_error_handlers
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import ErrorEnvelopeMiddleware, RequestLoggingMiddleware

# ── API routes ──
from backend.app.api.routes import create_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    pool: Optional[AsyncEngine] = None,
) -> FastAPI:
    """
    Build the application.

    With ``pool`` given the app serves against it as-is and never closes
    it. Otherwise the pool is built during lifespan startup; a ConfigError
    or PoolError there aborts startup before any listener is bound.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_pool = app.state.pool is None
        if owns_pool:
            resolved = settings or resolve_settings()
            if settings is None:
                setup_logging(resolved.LOG_LEVEL, json_output=resolved.is_production)
            app.state.settings = resolved
            logger.info(
                "Starting %s v%s [%s]",
                resolved.APP_NAME, resolved.APP_VERSION, resolved.ENVIRONMENT,
            )
            app.state.pool = await create_pool(resolved.DATABASE_URL)
            if resolved.RUN_MIGRATIONS:
                await run_migrations(app.state.pool)
        yield
        if owns_pool and app.state.pool is not None:
            await close_pool(app.state.pool)
            app.state.pool = None
        logger.info("Shutting down")

    app = FastAPI(
        title=settings.APP_NAME if settings else "Pool Health Service",
        description="Health-check service backed by a PostgreSQL connection pool.",
        version=settings.APP_VERSION if settings else "0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pool = pool

    # ── Middleware stack (last added is outermost) ──
    app.add_middleware(ErrorEnvelopeMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Routes ──
    app.include_router(create_router())

    return app


app = create_app()


def run() -> None:
    """Resolve settings, configure logging and serve until interrupted."""
    try:
        settings = resolve_settings()
    except ConfigError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.critical("Configuration error (%s): %s", exc.kind.value, exc.message)
        raise SystemExit(1) from exc

    setup_logging(settings.LOG_LEVEL, json_output=settings.is_production)
    logger.info("Starting server on %s", settings.server_address)

    uvicorn.run(
        create_app(settings=settings),
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_config=None,
    )


if __name__ == "__main__":
    run()
