"""Fixtures driving the real API against the in-memory database."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from projectgate.db.connection import get_db
from projectgate.web.app import create_app


@pytest.fixture
def app(db_session):
    """API app sharing the test session, so effects are visible to assertions."""
    test_app = create_app(metrics=False)

    async def _db():
        yield db_session

    test_app.dependency_overrides[get_db] = _db
    return test_app


@pytest_asyncio.fixture()
async def api(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://projectgate.test") as client:
        yield client
