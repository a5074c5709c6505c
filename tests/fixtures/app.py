# tests/fixtures/app.py

"""
🧩 App Fixture:
- Builds a `ServiceContext` from fakes (storage, Redis, HTTP, mailer)
- Builds the real app with `create_app(context=...)`
- Returns HTTP client fixture for integration tests
"""

from typing import AsyncGenerator, Dict

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from reeldrop.core.context import ServiceContext
from reeldrop.core.redis_client import RedisClient
from reeldrop.main import create_app
from tests.fixtures.mocks.email import RecordingNotifier
from tests.fixtures.mocks.redis import MockRedisClient
from tests.fixtures.mocks.storage import FakeStorage
from tests.fixtures.mocks.worker import FakeUpstreams

API = "/api/v1"


@pytest.fixture()
def archive_storage() -> FakeStorage:
    return FakeStorage(bucket="reeldrop-uploads", name="archive")


@pytest.fixture()
def edge_storage() -> FakeStorage:
    return FakeStorage(bucket="reeldrop-proxies", name="edge")


@pytest.fixture()
def mock_redis() -> MockRedisClient:
    return MockRedisClient()


@pytest.fixture()
def upstreams() -> FakeUpstreams:
    return FakeUpstreams()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
async def ctx(
    test_settings,
    db_engine,
    session_maker,
    archive_storage,
    edge_storage,
    mock_redis,
    upstreams,
    notifier,
) -> AsyncGenerator[ServiceContext, None]:
    """🧪 Service context wired to fakes; Redis is 'connected' to the mock."""
    redis = RedisClient(test_settings.REDIS_URL)
    redis._client = mock_redis
    http = httpx.AsyncClient(transport=upstreams.transport())
    context = ServiceContext(
        settings=test_settings,
        engine=db_engine,
        session_maker=session_maker,
        archive=archive_storage,
        edge=edge_storage,
        redis=redis,
        http=http,
        notifier=notifier,
    )
    yield context
    await http.aclose()


@pytest.fixture()
def app(ctx: ServiceContext) -> FastAPI:
    return create_app(context=ctx)


@pytest.fixture()
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """🌐 HTTP client against the in-process app (no lifespan; context is pre-built)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture()
def admin_headers(test_settings) -> Dict[str, str]:
    return {"X-Admin-Key": "admin-key"}


@pytest.fixture()
def worker_headers() -> Dict[str, str]:
    return {"X-Worker-Secret": "webhook-secret"}


@pytest.fixture()
def cron_headers() -> Dict[str, str]:
    return {"Authorization": "Bearer cron-secret"}
