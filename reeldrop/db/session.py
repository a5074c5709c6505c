# reeldrop/db/session.py
from __future__ import annotations

"""
ReelDrop — Database Engines & Session Dependencies

- Engines are built from an explicit `Settings` instance and owned by the
  `ServiceContext`; nothing is created at import time.
- `get_async_db` yields a session from the context bound to the running app.
"""

import logging
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from reeldrop.core.config import Settings

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────

_POOL_PRE_PING = True
_POOL_RECYCLE = 1800
_POOL_TIMEOUT = 30


def _derive_async_url(url: str) -> str:
    """Convert a sync Postgres URL to an asyncpg URL if needed."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


# ─────────────────────────────────────────────────────────────
# ⚡ Engine / session factory
# ─────────────────────────────────────────────────────────────

def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for `settings.DATABASE_URL`.

    SQLite URLs (tests, local tooling) get a `StaticPool` so an in-memory
    database is shared by every session of the engine.
    """
    url = _derive_async_url(settings.DATABASE_URL)
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.DB_ECHO,
        )
    return create_async_engine(
        url,
        pool_pre_ping=_POOL_PRE_PING,
        pool_recycle=_POOL_RECYCLE,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=_POOL_TIMEOUT,
        echo=settings.DB_ECHO,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# ─────────────────────────────────────────────────────────────
# 🔌 Dependencies
# ─────────────────────────────────────────────────────────────

async def get_async_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async SQLAlchemy session."""
    from reeldrop.core.context import get_context

    async with get_context(request).session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def db_healthcheck(engine: AsyncEngine) -> bool:
    """Quick SELECT 1 to verify DB connectivity (used by /readyz)."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        logger.exception("DB healthcheck failed")
        return False


__all__ = [
    "build_engine",
    "build_session_maker",
    "get_async_db",
    "db_healthcheck",
]
