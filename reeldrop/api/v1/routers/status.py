"""
🩺 ReelDrop · Storage status

- GET /api/v1/status/storage → bucket reachability for both storage accounts
"""

import asyncio

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from reeldrop.api.http_utils import json_no_store
from reeldrop.core.context import ServiceContext, get_context
from reeldrop.core.limiter import rate_limit

router = APIRouter(prefix="/status", tags=["Status"])


@router.get("/storage", summary="Storage account health")
@rate_limit("30/minute")
async def storage_status(request: Request, ctx: ServiceContext = Depends(get_context)) -> JSONResponse:
    """200 when both accounts see their bucket, 503 otherwise (details per account)."""
    archive, edge = await asyncio.gather(ctx.archive.check_health(), ctx.edge.check_health())
    ok = bool(archive.get("ok")) and bool(edge.get("ok"))
    return json_no_store(
        {"ok": ok, "storage": {"archive": archive, "edge": edge}},
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
