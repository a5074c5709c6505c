# reeldrop/services/transcoder.py
from __future__ import annotations

"""
🎬 ReelDrop — Transcoding worker client
=======================================

Starts proxy transcodes on the external worker and records the job on the
file (`files.transcoding`).

One active job per file
-----------------------
A non-blocking Redis lock `lock:transcode:{fileId}` serializes concurrent
triggers; inside the lock the stored job is re-read and a job still
`processing` is rejected with 409. If Redis is down the state check alone
applies (logged).
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.config import secret_value
from reeldrop.core.exceptions import (
    BadRequestError,
    StorageError,
    TranscodeConflictError,
    UpstreamServiceError,
)
from reeldrop.core.redis_client import LockNotAcquiredError
from reeldrop.schemas.enums import FileStatus, StorageTier, TranscodeStatus
from reeldrop.services.file_reconciler import FileReconciler, parse_file_id
from reeldrop.services.storage import S3StorageError

logger = logging.getLogger(__name__)

SOURCE_URL_TTL_SECONDS = 3600
WORKER = "transcoding worker"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Transcoder:
    def __init__(self, ctx, session: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.files = FileReconciler(ctx, session)

    async def start(self, file_id: Any, qualities: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Start a transcode for `file_id`.

        Returns
        -------
        dict
            `{"fileId", "jobId", "status": "processing", "qualities"}`

        Raises
        ------
        BadRequestError          not a video, or no stored source object
        TranscodeConflictError   a job for this file is already processing
        UpstreamServiceError     the worker rejected the request
        """
        fid = parse_file_id(file_id)
        record = await self.files.get(fid)
        if not record.is_video:
            raise BadRequestError("Not a video file", details={"fileType": record.file_type})
        if not record.storage_key:
            raise BadRequestError("File has no stored source to transcode")

        wanted = list(qualities or self.settings.TRANSCODE_DEFAULT_QUALITIES)

        async with self._single_flight(str(fid)):
            record = await self.files.get(fid)
            job = record.transcoding or {}
            if job.get("status") == TranscodeStatus.PROCESSING.value:
                raise TranscodeConflictError(file_id=str(fid), job_id=job.get("jobId"))

            try:
                source_url = await self.ctx.archive.presigned_get(record.storage_key, expires_in=SOURCE_URL_TTL_SECONDS)
            except S3StorageError as e:
                raise StorageError(f"Failed to sign transcode source: {e}") from e

            job_id = await self._dispatch(str(fid), source_url, wanted)

            await self.files.apply_tier_update(
                fid,
                StorageTier.TRANSCODING,
                {
                    "jobId": job_id,
                    "status": TranscodeStatus.PROCESSING.value,
                    "startedAt": _now_iso(),
                    "qualities": wanted,
                    "completedAt": None,
                    "error": None,
                },
            )
            await self.files.advance_status(fid, FileStatus.PROCESSING)

        logger.info("Transcode started (file_id=%s, job_id=%s, qualities=%s)", fid, job_id, ",".join(wanted))
        return {"fileId": str(fid), "jobId": job_id, "status": TranscodeStatus.PROCESSING.value, "qualities": wanted}

    # ── internals ────────────────────────────────────────────
    @asynccontextmanager
    async def _single_flight(self, file_id: str):
        redis = self.ctx.redis
        if not await redis.is_connected():
            logger.warning("Redis unavailable; transcode guard falls back to state check (file_id=%s)", file_id)
            yield
            return
        try:
            async with redis.lock(
                f"lock:transcode:{file_id}",
                timeout=self.settings.TRANSCODE_LOCK_SECONDS,
                blocking_timeout=0,
            ):
                yield
        except LockNotAcquiredError:
            raise TranscodeConflictError(file_id=file_id)

    async def _dispatch(self, file_id: str, source_url: str, qualities: List[str]) -> str:
        headers = {"Content-Type": "application/json"}
        token = secret_value(self.settings.WORKER_API_SECRET)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = {
            "fileId": file_id,
            "sourceUrl": source_url,
            "qualities": qualities,
            "webhookUrl": self.settings.transcode_webhook_url,
        }
        try:
            resp = await self.ctx.http.post(f"{self.settings.WORKER_URL}/api/transcode", json=body, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamServiceError(WORKER, f"Failed to start transcoding: {e}") from e

        if not resp.is_success:
            raise UpstreamServiceError(
                WORKER,
                f"Failed to start transcoding: {resp.text[:500]}",
                details={"status": resp.status_code},
            )
        try:
            job_id = (resp.json() or {}).get("jobId")
        except ValueError:
            job_id = None
        if not job_id:
            raise UpstreamServiceError(WORKER, "Worker response did not include a jobId")
        return str(job_id)


__all__ = ["Transcoder"]
