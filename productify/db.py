from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.pool import NullPool

from productify.errors import StorageError
from productify.settings import get_settings

logger = logging.getLogger(__name__)

ASYNCPG_SCHEME = "postgresql+asyncpg://"
_POSTGRES_SCHEMES = ("postgres://", "postgresql://", "postgresql+psycopg2://")
# libpq-only query options asyncpg rejects.
_DROPPED_QUERY_KEYS = {"channel_binding", "ssl"}
_LOCAL_HOSTS = {"localhost", "127.0.0.1"}


def _asyncpg_query(query: str) -> str:
    params = []
    wants_ssl = False
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key == "sslmode":
            wants_ssl = True
        elif key not in _DROPPED_QUERY_KEYS:
            params.append((key, value))
    if wants_ssl:
        params.append(("ssl", "true"))
    return urlencode(params)


def _normalize_database_url(database_url: str) -> str:
    """Point Postgres URLs at asyncpg; SQLite URLs pass through untouched."""
    url = str(database_url or "").strip()
    if not url or url.startswith("sqlite"):
        return url
    for scheme in _POSTGRES_SCHEMES:
        if url.startswith(scheme):
            url = ASYNCPG_SCHEME + url[len(scheme):]
            break
    try:
        parsed = urlparse(url)
        return urlunparse(parsed._replace(query=_asyncpg_query(parsed.query)))
    except ValueError:
        return url


def _engine_options(db_url: str) -> dict:
    if db_url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them.
        return {"poolclass": NullPool, "future": True}
    options: dict = {"pool_pre_ping": True, "future": True, "pool_size": 20, "max_overflow": 10}
    try:
        host = urlparse(db_url).hostname or ""
    except ValueError:
        logger.debug("Could not read host from database URL, connecting without SSL hint")
        host = ""
    if host and host not in _LOCAL_HOSTS:
        options["connect_args"] = {"ssl": True}
    return options


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        db_url = _normalize_database_url(get_settings().database_url)
        _engine = create_async_engine(db_url, **_engine_options(db_url))
    return _engine


def get_sessionmaker() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def transaction() -> AsyncIterator[AsyncSession]:
    """One unit of work: commits on success, rolls back on any exception."""
    session_factory = get_sessionmaker()
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except SQLAlchemyError as exc:
        logger.exception("Storage failure, transaction rolled back")
        raise StorageError(str(exc)) from exc


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
