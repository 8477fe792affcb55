# src/Lexicarium/db.py
from __future__ import annotations

import contextlib
import os
from collections.abc import AsyncIterator
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from Lexicarium.config import load_settings

log = structlog.get_logger()


def _normalize_url(url: str) -> str:
    # Upgrade to async drivers if user supplies sync URLs
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


DATABASE_URL = _normalize_url(load_settings().database_url)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None
_schema_initialized: bool = False


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite+aiosqlite://") and ":memory:" in url


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite+aiosqlite://"):
        opts: dict[str, Any] = {"connect_args": {"timeout": 30}}
        # One shared connection: an in-memory schema lives only as long as it does
        if _is_memory_sqlite(url) or os.environ.get("LEXICARIUM_SQLITE_STATIC_POOL") == "1":
            opts["poolclass"] = StaticPool
        return opts
    if url.startswith("postgresql+asyncpg://"):
        return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10, "pool_timeout": 30}
    return {}


def configure(url: str) -> None:
    """Point the module at another database; the next engine use picks it up.

    Call ``dispose_engine`` first if an engine for the old URL is open.
    """
    global DATABASE_URL, _engine, _sessionmaker, _schema_initialized
    DATABASE_URL = _normalize_url(url)
    _engine = None
    _sessionmaker = None
    _schema_initialized = False


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        _engine = create_async_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        # One-time sanitized connection config log (no password)
        url = _engine.url
        log.info(
            "db.connection.config",
            backend=url.get_backend_name(),
            host=url.host or "",
            database=url.database or "",
            driver=url.drivername,
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def dispose_engine() -> None:
    """Close pooled connections; the engine is rebuilt on next use."""
    global _engine, _sessionmaker, _schema_initialized
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
    _schema_initialized = False


async def create_schema() -> None:
    global _schema_initialized
    from Lexicarium import models as _models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    _schema_initialized = True


async def _ensure_schema_created_if_needed() -> None:
    """Ensure tables exist for in-memory SQLite during tests and CLI runs."""
    if _schema_initialized:
        return
    # Real databases go through Alembic
    if _is_memory_sqlite(DATABASE_URL):
        await create_schema()


@contextlib.asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    await _ensure_schema_created_if_needed()
    sm = get_sessionmaker()
    async with sm() as s:
        try:
            yield s
            await s.commit()
        except BaseException:
            log.error("db.session.error", exc_info=True)
            await s.rollback()
            raise
