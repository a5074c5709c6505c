# reeldrop/core/context.py
from __future__ import annotations

"""
ReelDrop — Service context
==========================

One explicit, process-wide container for everything that would otherwise be a
module-level cache: settings, the DB engine + session factory, both storage
gateways, the Redis wrapper, the shared httpx client and the mailer.

Lifecycle
---------
- Built by the FastAPI lifespan (`ServiceContext.from_settings`) and stored on
  `app.state.ctx`; tests build one from fakes and hand it to `create_app`.
- Injected into routes with `Depends(get_context)`.
- `aclose()` disposes the engine and closes Redis and HTTP clients.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reeldrop.core.config import Settings, secret_value
from reeldrop.core.redis_client import RedisClient
from reeldrop.db.session import build_engine, build_session_maker
from reeldrop.services.notifications import UploadNotifier
from reeldrop.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """Dependencies shared by every request of one application instance."""

    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    archive: ObjectStorage
    edge: ObjectStorage
    redis: RedisClient
    http: httpx.AsyncClient
    notifier: UploadNotifier
    started: bool = field(default=False, init=False)

    # ─────────────────────────────────────────────────────────
    # 🏗️ Construction
    # ─────────────────────────────────────────────────────────
    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContext":
        engine = build_engine(settings)
        archive = ObjectStorage(
            settings.ARCHIVE_BUCKET,
            name="archive",
            endpoint_url=settings.ARCHIVE_ENDPOINT_URL,
            region_name=settings.ARCHIVE_REGION,
            access_key_id=settings.ARCHIVE_ACCESS_KEY_ID,
            secret_access_key=secret_value(settings.ARCHIVE_SECRET_ACCESS_KEY),
        )
        edge = ObjectStorage(
            settings.EDGE_BUCKET,
            name="edge",
            endpoint_url=settings.EDGE_ENDPOINT_URL,
            region_name=settings.EDGE_REGION,
            access_key_id=settings.EDGE_ACCESS_KEY_ID,
            secret_access_key=secret_value(settings.EDGE_SECRET_ACCESS_KEY),
        )
        http = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.WORKER_TIMEOUT_SECONDS, connect=5.0),
            headers={"User-Agent": f"ReelDrop/{settings.VERSION}"},
        )
        return cls(
            settings=settings,
            engine=engine,
            session_maker=build_session_maker(engine),
            archive=archive,
            edge=edge,
            redis=RedisClient(settings.REDIS_URL),
            http=http,
            notifier=UploadNotifier(settings),
        )

    # ─────────────────────────────────────────────────────────
    # 🔁 Lifecycle
    # ─────────────────────────────────────────────────────────
    async def startup(self) -> None:
        """Connect Redis (best-effort; the API degrades without it)."""
        try:
            await self.redis.connect()
        except RuntimeError as e:
            logger.warning("Redis unavailable at startup: %s", e)
        self.started = True

    async def aclose(self) -> None:
        await self.redis.close()
        await self.http.aclose()
        await self.engine.dispose()
        self.started = False


def get_context(request: Request) -> ServiceContext:
    """FastAPI dependency returning the app's `ServiceContext`."""
    ctx: Optional[ServiceContext] = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise RuntimeError("ServiceContext is not initialized")
    return ctx


__all__ = ["ServiceContext", "get_context"]
