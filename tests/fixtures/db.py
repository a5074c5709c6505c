# tests/fixtures/db.py
"""
DB fixtures for tests (async, in-memory SQLite):
- One `sqlite+aiosqlite://` engine per test (StaticPool → one shared connection)
- Tables built from `Base.metadata` (same registry Alembic uses)
- Function-scoped session for arranging/inspecting rows directly
"""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reeldrop.core.config import Settings
from reeldrop.db import base
from reeldrop.db.session import build_engine, build_session_maker

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def test_settings() -> Settings:
    """Isolated settings; secrets are fixed so tests can send them."""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        REDIS_URL="redis://redis.invalid:6379/0",
        PUBLIC_BASE_URL="http://api.test",
        WORKER_URL="http://worker.test",
        WORKER_API_SECRET="worker-token",
        WEBHOOK_SECRET="webhook-secret",
        CRON_SECRET="cron-secret",
        ADMIN_API_KEY="admin-key",
        LUCIDLINK_ENABLED=False,
        LUCIDLINK_SERVER_URL="http://lucid.test",
        LUCIDLINK_API_TOKEN="lucid-token",
        SMTP_HOST=None,
        NOTIFY_EMAILS=None,
        ARCHIVE_ACCESS_KEY_ID="test",
        ARCHIVE_SECRET_ACCESS_KEY="test",
        EDGE_ACCESS_KEY_ID="test",
        EDGE_SECRET_ACCESS_KEY="test",
    )


@pytest.fixture()
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(base.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(db_engine)


@pytest.fixture()
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Fresh session per test (shares the in-memory DB with the app)."""
    async with session_maker() as session:
        yield session
