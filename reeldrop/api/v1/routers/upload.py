"""
📤 ReelDrop · Public Upload API (auto, direct, batch & multipart)
================================================================

Public routes under `/api/v1/upload`. The upload link token in the body is the
only credential: every route that hands out storage URLs validates the link
first (404 unknown, 403 inactive/expired/exhausted) and never signs anything
for a rejected link.

Routes (8)
----------
- POST /api/v1/upload/init                  → Size-based plan + started upload (direct or multipart)
- POST /api/v1/upload/presigned             → Single presigned PUT
- POST /api/v1/upload/batch-urls            → N placeholder PUT URLs (default 5, max 20)
- POST /api/v1/upload/register              → Record a finished upload as a File
- POST /api/v1/upload/multipart/initialize  → Create multipart upload (uploadId + storageKey)
- POST /api/v1/upload/multipart/chunk       → Part URL(s), single or batched
- POST /api/v1/upload/multipart/complete    → Complete (parts sorted, aborted on failure)
- POST /api/v1/upload/multipart/abort       → Abort

Operations
----------
- **SlowAPI** per-IP limits; responses are `JSONResponse` with `no-store`.
- Notifications after registration run as background tasks.
"""

# ─────────────────────────────────────────────────────────────────────────────
# 📦 Imports
# ─────────────────────────────────────────────────────────────────────────────
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.api.http_utils import json_no_store
from reeldrop.core.context import ServiceContext, get_context
from reeldrop.core.limiter import rate_limit
from reeldrop.db.session import get_async_db
from reeldrop.schemas.uploads import (
    BatchUrlsIn,
    MultipartAbortIn,
    MultipartCompleteIn,
    MultipartInitIn,
    PartUrlsIn,
    PresignedUploadIn,
    RegisterUploadIn,
    UploadInitIn,
)
from reeldrop.services.upload_coordinator import UploadCoordinator

router = APIRouter(prefix="/upload", tags=["Uploads"])


def _coordinator(
    ctx: ServiceContext = Depends(get_context),
    db: AsyncSession = Depends(get_async_db),
) -> UploadCoordinator:
    return UploadCoordinator(ctx, db)


# ─────────────────────────────────────────────────────────────────────────────
# 🧭 Auto-selected strategy
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/init", summary="Plan and start an upload from its declared size")
@rate_limit("30/minute")
async def upload_init(
    payload: UploadInitIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    """Direct presigned PUT below `MULTIPART_THRESHOLD_BYTES`, multipart at or above."""
    return json_no_store(await uploads.init(payload))


# ─────────────────────────────────────────────────────────────────────────────
# 📄 Direct & batch
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/presigned", summary="Presigned PUT for a single-part upload")
@rate_limit("30/minute")
async def upload_presigned(
    payload: PresignedUploadIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    return json_no_store(await uploads.presign_direct(payload))


@router.post("/batch-urls", summary="Pre-allocated placeholder PUT URLs")
@rate_limit("10/minute")
async def upload_batch_urls(
    payload: BatchUrlsIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    return json_no_store(await uploads.presign_batch(payload))


@router.post("/register", summary="Register a finished upload")
@rate_limit("60/minute")
async def upload_register(
    payload: RegisterUploadIn,
    request: Request,
    background: BackgroundTasks,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    """Creates the File (`completed`), bumps the link counter, queues the notification."""
    return json_no_store(await uploads.register(payload, background))


# ─────────────────────────────────────────────────────────────────────────────
# 🧩 Multipart
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/multipart/initialize", summary="Create a multipart upload")
@rate_limit("30/minute")
async def multipart_initialize(
    payload: MultipartInitIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    return json_no_store(await uploads.initialize_multipart(payload))


@router.post("/multipart/chunk", summary="Presigned URL(s) for multipart parts")
@rate_limit("120/minute")
async def multipart_chunk(
    payload: PartUrlsIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    """All-or-nothing: one failed signature fails the whole batch."""
    return json_no_store(await uploads.part_urls(payload))


@router.post("/multipart/complete", summary="Complete a multipart upload")
@rate_limit("30/minute")
async def multipart_complete(
    payload: MultipartCompleteIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    return json_no_store(await uploads.complete_multipart(payload))


@router.post("/multipart/abort", summary="Abort a multipart upload")
@rate_limit("30/minute")
async def multipart_abort(
    payload: MultipartAbortIn,
    request: Request,
    uploads: UploadCoordinator = Depends(_coordinator),
) -> JSONResponse:
    return json_no_store(await uploads.abort_multipart(payload))
