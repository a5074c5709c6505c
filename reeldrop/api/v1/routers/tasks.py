"""
⏱️ ReelDrop · Maintenance tasks (cron)
=====================================

Routes (2)
----------
- POST /api/v1/tasks/archive-to-wasabi  → Archive originals of completed files older than the threshold
- POST /api/v1/tasks/sweep-multipart    → Abort stale in-progress multipart uploads

Both require `Authorization: Bearer <CRON_SECRET>`; per-item failures are
reported in the body and never fail the run.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.api.http_utils import json_no_store, require_cron
from reeldrop.core.context import ServiceContext, get_context
from reeldrop.core.limiter import rate_limit_exempt
from reeldrop.db.session import get_async_db
from reeldrop.services.archival import ArchivalService
from reeldrop.services.upload_coordinator import UploadCoordinator

router = APIRouter(prefix="/tasks", tags=["Tasks"], dependencies=[Depends(require_cron)])


@router.post("/archive-to-wasabi", summary="Archive originals into the archive tier")
@rate_limit_exempt()
async def archive_to_wasabi(
    days_threshold: Optional[int] = Query(None, ge=0, le=365, alias="daysThreshold"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    result = await ArchivalService(ctx, db).archive_pending(days_threshold=days_threshold, limit=limit)
    return json_no_store(
        {"success": True, "message": f"Archived {result['archivedFiles']} files to Wasabi", **result}
    )


@router.post("/sweep-multipart", summary="Abort stale multipart uploads")
@rate_limit_exempt()
async def sweep_multipart(
    older_than_hours: Optional[int] = Query(None, ge=1, le=24 * 30, alias="olderThanHours"),
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    result = await UploadCoordinator(ctx, db).sweep_stale_multipart(older_than_hours)
    return json_no_store({"success": True, **result})
