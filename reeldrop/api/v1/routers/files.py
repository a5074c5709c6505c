"""
🎞️ ReelDrop · Files API (admin views, bulk actions, transcoding, playback)
=========================================================================

Routes (5)
----------
- GET  /api/v1/files/{fileId}             → Admin: file record with tier state and proxies
- POST /api/v1/files/bulk                 → Admin: delete | download | status-update, per-item results
- GET  /api/v1/files/{fileId}/stream-url  → Admin: 24 h presigned GET of the original (Redis-cached)
- POST /api/v1/files/{fileId}/transcode   → Admin: start a transcode (409 while one is processing)
- POST /api/v1/files/playback             → Public: adaptive proxy selection (200/202)

Caching
-------
Stream URLs are cached under `stream-url:{fileId}` for 90 % of their lifetime
so a cached URL is never handed out after it expires. Without Redis every call
signs a fresh URL.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.api.http_utils import json_no_store, require_admin
from reeldrop.core.context import ServiceContext, get_context
from reeldrop.core.exceptions import BadRequestError, StorageError
from reeldrop.core.limiter import rate_limit
from reeldrop.db.session import get_async_db
from reeldrop.schemas.enums import FileStatus
from reeldrop.schemas.files import BulkActionIn, FileOut, FileProxyOut, PlaybackIn, TranscodeIn
from reeldrop.services.file_reconciler import FileReconciler
from reeldrop.services.playback import PlaybackResolver
from reeldrop.services.storage import S3StorageError
from reeldrop.services.transcoder import Transcoder

router = APIRouter(prefix="/files", tags=["Files"])

STREAM_CACHE_RATIO = 0.9


def _reconciler(
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> FileReconciler:
    return FileReconciler(ctx, db)


# ─────────────────────────────────────────────────────────────────────────────
# 📺 Playback (public; declared before /{file_id} routes)
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/playback", summary="Resolve the best proxy for a client")
@rate_limit("120/minute")
async def playback(
    payload: PlaybackIn,
    request: Request,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    """200 with `streamUrl`, or 202 while proxies are being produced."""
    result = await PlaybackResolver(ctx, db).resolve(payload)
    return json_no_store(result.body, status_code=result.status_code)


# ─────────────────────────────────────────────────────────────────────────────
# 🛡️ Admin
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/bulk", summary="Apply an action to many files", dependencies=[Depends(require_admin)])
async def bulk_action(
    payload: BulkActionIn,
    files: FileReconciler = Depends(_reconciler),
) -> JSONResponse:
    return json_no_store(await files.bulk(payload.action, payload.file_ids, status=payload.status))


@router.get("/{file_id}", summary="Get a file record", dependencies=[Depends(require_admin)])
async def get_file(
    file_id: str,
    files: FileReconciler = Depends(_reconciler),
) -> JSONResponse:
    record = await files.get(file_id)
    body = FileOut.model_validate(record).model_dump(by_alias=True, mode="json")
    body["proxies"] = [
        FileProxyOut.model_validate(p).model_dump(by_alias=True, mode="json")
        for p in await files.proxies(record.id)
    ]
    return json_no_store(body)


@router.get("/{file_id}/stream-url", summary="Presigned URL for the original", dependencies=[Depends(require_admin)])
async def stream_url(
    file_id: str,
    ctx: ServiceContext = Depends(get_context),
    files: FileReconciler = Depends(_reconciler),
) -> JSONResponse:
    record = await files.get(file_id)
    if FileStatus(record.status) != FileStatus.COMPLETED:
        raise BadRequestError("File is not ready for viewing", details={"status": FileStatus(record.status).value})
    if not record.storage_key:
        raise BadRequestError("File has no stored original")

    ttl = ctx.settings.STREAM_URL_TTL_SECONDS
    cache_key = f"stream-url:{record.id}"
    use_cache = await ctx.redis.is_connected()
    if use_cache:
        cached = await ctx.redis.json_get(cache_key)
        if cached:
            return json_no_store({**cached, "cached": True})

    try:
        url = await ctx.archive.presigned_get(
            record.storage_key,
            expires_in=ttl,
            response_content_disposition=f'inline; filename="{record.file_name}"',
        )
    except S3StorageError as e:
        raise StorageError(f"Failed to sign stream URL: {e}") from e

    body: Dict[str, Any] = {"fileId": str(record.id), "url": url, "expiresIn": ttl}
    if use_cache:
        await ctx.redis.json_set(cache_key, body, ttl_seconds=int(ttl * STREAM_CACHE_RATIO))
    return json_no_store({**body, "cached": False})


@router.post(
    "/{file_id}/transcode",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a transcode",
    dependencies=[Depends(require_admin)],
)
async def transcode(
    file_id: str,
    payload: Optional[TranscodeIn] = None,
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    started = await Transcoder(ctx, db).start(file_id, payload.qualities if payload else None)
    return json_no_store({"success": True, **started}, status_code=status.HTTP_202_ACCEPTED)
