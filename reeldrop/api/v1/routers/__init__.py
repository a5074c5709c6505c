"""
🧭 ReelDrop • API v1 Router Aggregator
=====================================

Exports the **combined `router`** and each sub-router.

Quick usage
-----------
    from reeldrop.api.v1.routers import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")

Auth and rate limits live in the child routers: public upload/playback routes
are keyed by IP, admin routes check `X-Admin-Key`, webhooks check
`X-Worker-Secret`, tasks check the cron bearer token.
"""

from fastapi import APIRouter

from .files import router as files_router
from .links import admin_router as admin_links_router
from .links import router as links_router
from .status import router as status_router
from .tasks import router as tasks_router
from .upload import router as upload_router
from .webhooks import router as webhooks_router


def build_v1_router() -> APIRouter:
    """Compose the v1 surface into a single `APIRouter` (prefixes live on each child)."""
    r = APIRouter()
    r.include_router(upload_router)
    r.include_router(links_router)
    r.include_router(admin_links_router)
    r.include_router(files_router)
    r.include_router(webhooks_router)
    r.include_router(tasks_router)
    r.include_router(status_router)
    return r


router = build_v1_router()


__all__ = [
    "router",
    "build_v1_router",
    "upload_router",
    "links_router",
    "admin_links_router",
    "files_router",
    "webhooks_router",
    "tasks_router",
    "status_router",
]
