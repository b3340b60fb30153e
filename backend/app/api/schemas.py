"""
Pydantic schemas for the service's HTTP responses.

Separated from the route handlers so they are reusable across
the codebase (tests, future routers).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class DatabaseStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class HealthResponse(BaseModel):
    """Service liveness plus the state of the database dependency."""
    status: str = Field(default="ok", examples=["ok"])
    timestamp: str = Field(..., description="RFC 3339 UTC timestamp")
    database: DatabaseStatus
