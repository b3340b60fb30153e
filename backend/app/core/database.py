"""
Database layer — bounded async PostgreSQL pool via SQLAlchemy 2.0 + asyncpg.

Provides:
    • Pool construction with a liveness probe (a pool is only handed
      back once the probe has passed)
    • Probe / health-check / migration-trigger operations
    • Dependency injection of the shared pool into FastAPI routes

Usage:
    from backend.app.core.database import create_pool, get_pool

    pool = await create_pool(settings.DATABASE_URL)

    @router.get("/things")
    async def list_things(pool: AsyncEngine = Depends(get_pool)):
        async with pool.connect() as conn:
            ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from sqlalchemy import event, make_url, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import ArgumentError, DisconnectionError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

ACCEPTED_SCHEMES = ("postgresql://", "postgres://")
DRIVER_SCHEME = "postgresql+asyncpg://"

PROBE_QUERY = "SELECT 1 AS test_value"
PROBE_EXPECTED = 1

# Failures that mean "the database did not answer", as opposed to a bug
_CONNECT_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class PoolSettings:
    max_connections: int = 10
    min_connections: int = 1
    acquire_timeout: float = 30.0    # seconds
    idle_timeout: float = 600.0      # seconds
    max_lifetime: float = 1800.0     # seconds


POOL_SETTINGS = PoolSettings()


class PoolErrorKind(str, Enum):
    EMPTY_URL = "empty_url"
    INVALID_URL_FORMAT = "invalid_url_format"
    CONNECTION_FAILED = "connection_failed"
    CONNECTION_TEST_FAILED = "connection_test_failed"


class PoolError(Exception):
    """The pool could not be built or failed its liveness probe."""

    def __init__(self, kind: PoolErrorKind, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause


class ProbeError(Exception):
    """The liveness query failed or returned an unexpected value."""


# ── Idle timeout (SQLAlchemy pools have no native idle limit) ──

def _stamp_checkin(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["checked_in_at"] = time.monotonic()


def _reject_idle(idle_timeout: float, connection_record: Any) -> None:
    checked_in_at = connection_record.info.get("checked_in_at")
    if checked_in_at is not None and time.monotonic() - checked_in_at > idle_timeout:
        # The pool discards this connection and checks out a fresh one
        raise DisconnectionError(f"connection idle for more than {idle_timeout:.0f}s")


def _install_idle_timeout(engine: AsyncEngine, idle_timeout: float) -> None:
    pool = engine.sync_engine.pool

    event.listen(pool, "checkin", _stamp_checkin)

    @event.listens_for(pool, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy):
        _reject_idle(idle_timeout, connection_record)


# ── Engine ──

# libpq query keys asyncpg.connect() does not accept as keyword arguments
_LIBPQ_ONLY_KEYS = frozenset({
    "sslmode", "sslrootcert", "sslcert", "sslkey", "sslcrl", "sslpassword",
    "connect_timeout", "application_name", "options", "target_session_attrs",
    "gssencmode", "channel_binding",
})


def driver_url(database_url: str) -> str:
    """Rewrite a postgres:// or postgresql:// URL for the asyncpg dialect."""
    for scheme in ACCEPTED_SCHEMES:
        if database_url.startswith(scheme):
            return DRIVER_SCHEME + database_url[len(scheme):]
    return database_url


def split_libpq_options(url: URL) -> Tuple[URL, Dict[str, Any]]:
    """
    Move libpq-style query options off the URL.

    ``sslmode`` becomes asyncpg's ``ssl`` argument and ``application_name``
    a server setting; the remaining libpq-only keys are dropped.
    """
    query = url.query
    connect_args: Dict[str, Any] = {}

    sslmode = query.get("sslmode")
    if isinstance(sslmode, str):
        connect_args["ssl"] = sslmode

    application_name = query.get("application_name")
    if isinstance(application_name, str):
        connect_args["server_settings"] = {"application_name": application_name}

    dropped = sorted(_LIBPQ_ONLY_KEYS.intersection(query) - {"sslmode", "application_name"})
    if dropped:
        logger.warning("Ignoring libpq-only connection options: %s", ", ".join(dropped))

    return url.difference_update_query(_LIBPQ_ONLY_KEYS.intersection(query)), connect_args


def _build_engine(database_url: str, settings: PoolSettings = POOL_SETTINGS) -> AsyncEngine:
    url, connect_args = split_libpq_options(make_url(driver_url(database_url)))
    engine = create_async_engine(
        url,
        pool_size=settings.max_connections,
        max_overflow=0,
        pool_timeout=settings.acquire_timeout,
        pool_recycle=int(settings.max_lifetime),
        connect_args={"timeout": settings.acquire_timeout, **connect_args},
    )
    _install_idle_timeout(engine, settings.idle_timeout)
    return engine


async def create_pool(database_url: str) -> AsyncEngine:
    """
    Build the bounded pool, open its first connection and probe it.

    Raises PoolError; the engine is disposed of before any failure
    propagates, so a caller never holds an unverified pool.
    """
    logger.info("Creating database connection pool...")

    if not database_url or not database_url.strip():
        logger.error("Database URL cannot be empty")
        raise PoolError(PoolErrorKind.EMPTY_URL, "Database URL cannot be empty")

    if not database_url.startswith(ACCEPTED_SCHEMES):
        message = (
            "Invalid database URL format. "
            "Must start with 'postgresql://' or 'postgres://'"
        )
        logger.error(message)
        raise PoolError(PoolErrorKind.INVALID_URL_FORMAT, message)

    try:
        engine = _build_engine(database_url)
    except (ArgumentError, ValueError) as exc:
        logger.error("Failed to create database connection pool: %s", exc)
        raise PoolError(
            PoolErrorKind.CONNECTION_FAILED,
            f"Database connection failed: {exc}",
            cause=exc,
        ) from exc

    try:
        # Opens the first connection; it stays in the pool as the warm minimum
        async with engine.connect():
            pass
    except Exception as exc:
        logger.error("Failed to create database connection pool: %s", exc)
        await engine.dispose()
        raise PoolError(
            PoolErrorKind.CONNECTION_FAILED,
            f"Database connection failed: {exc}",
            cause=exc,
        ) from exc

    try:
        await test_connection(engine)
    except ProbeError as exc:
        logger.error("Database connection test failed: %s", exc)
        await engine.dispose()
        raise PoolError(
            PoolErrorKind.CONNECTION_TEST_FAILED,
            f"Database connection test failed: {exc}",
            cause=exc,
        ) from exc

    logger.info(
        "Database connection pool created and tested successfully",
        extra={"pool_size": POOL_SETTINGS.max_connections},
    )
    return engine


async def test_connection(pool: AsyncEngine) -> None:
    """Run the round-trip probe query. Raises ProbeError on any failure."""
    logger.debug("Testing database connection...")

    try:
        async with pool.connect() as conn:
            result = await conn.execute(text(PROBE_QUERY))
            value = result.scalar_one()
    except _CONNECT_ERRORS as exc:
        logger.error("Database connection test query failed: %s", exc)
        raise ProbeError(f"Connection test failed: {exc}") from exc

    if value != PROBE_EXPECTED:
        logger.error("Database connection test returned unexpected value: %r", value)
        raise ProbeError(f"Connection test returned unexpected value: {value!r}")

    logger.debug("Database connection test successful")


async def health_check(pool: AsyncEngine) -> bool:
    """True when the probe passes; never raises."""
    try:
        await test_connection(pool)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        return False
    logger.debug("Database health check passed")
    return True


async def run_migrations(pool: AsyncEngine) -> None:
    """
    Migration hook.

    Schema migrations belong to an external runner; this only verifies
    the pool is reachable before one would be invoked.
    """
    logger.info("Running database migrations...")
    try:
        await test_connection(pool)
    except ProbeError as exc:
        raise PoolError(
            PoolErrorKind.CONNECTION_TEST_FAILED,
            f"Database connection test failed: {exc}",
            cause=exc,
        ) from exc
    logger.info("Database migrations completed successfully")


async def close_pool(pool: AsyncEngine) -> None:
    """Dispose engine connections."""
    await pool.dispose()
    logger.info("Database connections closed")


# ── Dependency ──
def get_pool(request: Request) -> AsyncEngine:
    """FastAPI dependency: the process-wide pool stored on app state."""
    return request.app.state.pool
