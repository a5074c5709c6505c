"""
🪝 ReelDrop · Webhooks (platform, transcoding worker, storage workers)
=====================================================================

Every route authenticates the `X-Worker-Secret` header against
`WEBHOOK_SECRET` (constant-time, 401 on mismatch) and hands the event to
`WebhookIngest`, which is idempotent under replay.

Routes (4)
----------
- POST /api/v1/webhooks/frameio     → event from body `type`, payload from `data` (or the body itself)
- POST /api/v1/webhooks/transcode   → event `transcode.{status}`
- POST /api/v1/webhooks/lucidlink   → event `lucidlink.store`
- POST /api/v1/webhooks/wasabi      → event `wasabi.store`

Unknown event types are acknowledged with 200 `{handled: false}` so senders
do not retry them.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.api.http_utils import json_no_store, worker_secret
from reeldrop.core.config import secret_value
from reeldrop.core.context import ServiceContext, get_context
from reeldrop.core.exceptions import BadRequestError
from reeldrop.core.limiter import rate_limit_exempt
from reeldrop.db.session import get_async_db
from reeldrop.services.webhook_ingest import WebhookIngest, verify_shared_secret

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _ingest(
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> WebhookIngest:
    return WebhookIngest(ctx, db)


async def _read_json(request: Request, ingest: WebhookIngest, secret: Optional[str]) -> Dict[str, Any]:
    """Body as an object; unauthenticated callers get 401 before any parse error."""
    try:
        body = await request.json()
    except ValueError:
        verify_shared_secret(secret_value(ingest.settings.WEBHOOK_SECRET), secret)
        raise BadRequestError("Request body must be JSON")
    if not isinstance(body, dict):
        verify_shared_secret(secret_value(ingest.settings.WEBHOOK_SECRET), secret)
        raise BadRequestError("Request body must be a JSON object")
    return body


@router.post("/frameio", summary="Platform events (asset.ready, proxy.ready)")
@rate_limit_exempt()
async def frameio_webhook(
    request: Request,
    secret: Optional[str] = Depends(worker_secret),
    ingest: WebhookIngest = Depends(_ingest),
) -> JSONResponse:
    body = await _read_json(request, ingest, secret)
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    return json_no_store(await ingest.handle(secret, body.get("type"), data))


@router.post("/transcode", summary="Transcoding worker status callback")
@rate_limit_exempt()
async def transcode_webhook(
    request: Request,
    secret: Optional[str] = Depends(worker_secret),
    ingest: WebhookIngest = Depends(_ingest),
) -> JSONResponse:
    body = await _read_json(request, ingest, secret)
    status = body.get("status")
    return json_no_store(await ingest.handle(secret, f"transcode.{status}" if status else None, body))


@router.post("/lucidlink", summary="Store a proxy on the LucidLink filespace")
@rate_limit_exempt()
async def lucidlink_webhook(
    request: Request,
    secret: Optional[str] = Depends(worker_secret),
    ingest: WebhookIngest = Depends(_ingest),
) -> JSONResponse:
    body = await _read_json(request, ingest, secret)
    return json_no_store(await ingest.handle(secret, "lucidlink.store", body))


@router.post("/wasabi", summary="Archive a proxy or original into Wasabi")
@rate_limit_exempt()
async def wasabi_webhook(
    request: Request,
    secret: Optional[str] = Depends(worker_secret),
    ingest: WebhookIngest = Depends(_ingest),
) -> JSONResponse:
    body = await _read_json(request, ingest, secret)
    return json_no_store(await ingest.handle(secret, "wasabi.store", body))
