# reeldrop/main.py
from __future__ import annotations

"""
# ReelDrop API — Application Entrypoint (FastAPI)

ASGI application factory and lifecycle for the ReelDrop upload orchestration
service.

## Design Goals
- Deterministic, testable **app factory** (`create_app`) with explicit lifespan.
- One **ServiceContext** per app instance (engine, storage gateways, Redis,
  HTTP client, mailer) stored on `app.state.ctx`; tests inject their own.
- Explicit **middleware order**: 1) request id → 2) gzip → 3) rate limits.
- Centralized problem+json exception handling.

## Probes
- `/healthz` — liveness (process up).
- `/readyz` — readiness (DB `SELECT 1` + Redis ping).
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging
import os

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse

# -- Logging bootstrap (Loguru + stdlib intercept) ----------------------------
from reeldrop.core import logger as _logsetup  # noqa: F401

from reeldrop.api.v1.routers import router as api_v1_router
from reeldrop.core.config import Settings, settings as default_settings
from reeldrop.core.context import ServiceContext
from reeldrop.core.exception_handlers import (
    app_exception_handler,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from reeldrop.core.exceptions import AppException
from reeldrop.core.limiter import install_rate_limiter, rate_limit_exempt
from reeldrop.db.session import db_healthcheck
from reeldrop.middleware.request_id import RequestIDMiddleware

logger = logging.getLogger("reeldrop")


# ─────────────────────────────────────────────────────────────────────────────
# 🔄 Lifespan: startup & shutdown
# ─────────────────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifecycle manager.

    Startup:
        - Build the `ServiceContext` unless one was injected (tests).
        - Best-effort connect to Redis (non-fatal on failure).

    Shutdown:
        - Close Redis and the HTTP client, dispose the DB engine.
    """
    ctx: Optional[ServiceContext] = getattr(app.state, "ctx", None)
    if ctx is None:
        ctx = ServiceContext.from_settings(app.state.settings)
        app.state.ctx = ctx
    logger.info("✅ ReelDrop API starting up (env=%s)", ctx.settings.ENV)
    await ctx.startup()

    try:
        yield
    finally:
        await ctx.aclose()
        logger.info("🛑 ReelDrop API shutting down")


# ─────────────────────────────────────────────────────────────────────────────
# 🏗️ App factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(context: Optional[ServiceContext] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and configure the FastAPI app instance.

    Parameters
    ----------
    context : ServiceContext | None
        Pre-built dependencies. When omitted the lifespan builds one from
        `settings`.
    settings : Settings | None
        Defaults to the module-level singleton (or `context.settings`).
    """
    cfg = settings or (context.settings if context is not None else default_settings)
    docs_url = "/docs" if cfg.ENABLE_DOCS else None
    openapi_url = "/openapi.json" if cfg.ENABLE_DOCS else None

    app = FastAPI(
        title=cfg.PROJECT_NAME,
        version=cfg.VERSION,
        docs_url=docs_url,
        redoc_url=None,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )
    app.state.settings = cfg
    if context is not None:
        app.state.ctx = context

    # ── Middlewares (order matters) ─────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1024)
    install_rate_limiter(app)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── Exception handlers ──────────────────────────────────────────────────
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]

    # ── Routers (versioned API) ─────────────────────────────────────────────
    app.include_router(api_v1_router, prefix=cfg.API_V1_STR)

    # ── Meta endpoints ──────────────────────────────────────────────────────
    @app.get("/healthz", tags=["meta"])
    @rate_limit_exempt()
    async def healthz() -> dict[str, bool]:
        """Liveness probe; no external checks."""
        return {"ok": True}

    @app.get("/readyz", tags=["meta"])
    @rate_limit_exempt()
    async def readyz() -> JSONResponse:
        """Readiness probe (DB + Redis). 503 when either is down."""
        ctx: ServiceContext = app.state.ctx
        db_ok = await db_healthcheck(ctx.engine)
        redis_ok = await ctx.redis.is_connected()
        ready = db_ok and redis_ok
        return JSONResponse(
            {"ready": ready, "checks": {"db": db_ok, "redis": redis_ok}},
            status_code=200 if ready else 503,
        )

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Minimal root that points to docs (when enabled)."""
        return JSONResponse({"name": cfg.PROJECT_NAME, "docs": app.docs_url or "", "version": cfg.VERSION})

    return app


# ─────────────────────────────────────────────────────────────────────────────
# 🚀 Module-level ASGI app for Uvicorn/Gunicorn
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()
__all__ = ["create_app", "app", "lifespan"]


# Local dev runner (prefer: `uvicorn reeldrop.main:app --reload`)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reeldrop.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
        log_level=default_settings.LOG_LEVEL.lower(),
    )
