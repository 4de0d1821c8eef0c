"""Shared fixtures: a throwaway SQLite database per test.

Coroutines are driven with ``asyncio.run``; the SQLite engine uses a
``NullPool`` so nothing leaks between event loops.
"""

import asyncio

import pytest

from productify import db
from productify.db_init import init_db
from productify.settings import reset_settings

TOKEN = "test-backend-secret"
USER = "ana@example.com"
OTHER_USER = "bruno@example.com"


async def _fresh_schema():
    await db.dispose_engine()
    await init_db()


@pytest.fixture
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'productify.db'}")
    monkeypatch.setenv("BACKEND_SESSION_SECRET", TOKEN)
    monkeypatch.setenv("APP_TIMEZONE", "UTC")
    monkeypatch.delenv("ALLOWED_EMAILS", raising=False)
    reset_settings()
    asyncio.run(_fresh_schema())
    yield tmp_path
    asyncio.run(db.dispose_engine())
    reset_settings()


@pytest.fixture
def run(database):
    """Run a coroutine to completion against the test database."""
    return asyncio.run


@pytest.fixture
def auth_headers():
    return {"X-Backend-Token": TOKEN, "X-User-Email": USER}
