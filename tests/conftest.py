"""Shared fixtures: pool stand-ins and an HTTP client bound to them."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app
from tests.fakes import FakePool


@pytest.fixture
def healthy_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def unreachable_pool() -> FakePool:
    return FakePool(connect_error=ConnectionRefusedError("Connection refused"))


@pytest.fixture
def client(healthy_pool):
    """TestClient against an app serving the healthy pool."""
    with TestClient(create_app(pool=healthy_pool)) as test_client:
        yield test_client
