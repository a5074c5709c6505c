# reeldrop/services/playback.py
from __future__ import annotations

"""
📺 ReelDrop — Adaptive Playback Resolver
========================================

Chooses the proxy a client should stream from its hints (measured downlink,
network type, viewport width) and the proxies that exist for the file.

Ladder
------
    360p   800k
    540p  1500k
    720p  2500k
    1080p 5000k
    2160p 15000k

Selection
---------
1) Target from hints (speed → type → width → 720p)
2) Exact match for an explicit, existing quality
3) Otherwise the proxy whose numeric height is closest to the target; ties go
   to the first proxy in stored order
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.exceptions import (
    AppException,
    BadRequestError,
    StorageError,
    TranscodeConflictError,
    TranscodeFailedError,
    UpstreamServiceError,
)
from reeldrop.db.models.file_proxy import FileProxy
from reeldrop.schemas.enums import TranscodeStatus
from reeldrop.schemas.files import PlaybackIn
from reeldrop.services.file_reconciler import FileReconciler
from reeldrop.services.transcoder import Transcoder

logger = logging.getLogger(__name__)

QUALITY_LADDER: Dict[str, int] = {
    "360p": 800_000,
    "540p": 1_500_000,
    "720p": 2_500_000,
    "1080p": 5_000_000,
    "2160p": 15_000_000,
}
DEFAULT_QUALITY = "720p"
_DEFAULT_VALUE = 720
_NUMBER_RE = re.compile(r"\d+")

_CONNECTION_TYPE_QUALITY = {
    "slow-2g": "360p",
    "2g": "360p",
    "3g": "540p",
    "4g": "720p",
    "5g": "1080p",
    "wifi": "1080p",
}


# ─────────────────────────────────────────────────────────────
# 🧮 Pure selection helpers
# ─────────────────────────────────────────────────────────────

def determine_optimal_quality(
    *,
    connection_speed: Optional[float] = None,
    connection_type: Optional[str] = None,
    client_width: Optional[int] = None,
) -> str:
    """Target ladder label from client hints, in priority order."""
    if connection_speed and connection_speed > 0:
        if connection_speed < 1:
            return "360p"
        if connection_speed < 2.5:
            return "540p"
        if connection_speed < 5:
            return "720p"
        if connection_speed < 10:
            return "1080p"
        return "2160p"

    if connection_type:
        return _CONNECTION_TYPE_QUALITY.get(connection_type.lower(), DEFAULT_QUALITY)

    if client_width:
        if client_width < 640:
            return "360p"
        if client_width < 960:
            return "540p"
        if client_width < 1280:
            return "720p"
        if client_width < 1920:
            return "1080p"
        return "2160p"

    return DEFAULT_QUALITY


def quality_value(label: Optional[str]) -> int:
    """First integer in a label (`"1080p"` → 1080); unknown labels count as 720."""
    m = _NUMBER_RE.search(label or "")
    return int(m.group(0)) if m else _DEFAULT_VALUE


def find_closest_proxy(proxies: Sequence[Any], target: str) -> Optional[Any]:
    """
    Exact quality match, else minimal `|value(p) - value(target)|`.

    `proxies` is in stored order; `min` keeps the first of equal distances.
    """
    if not proxies:
        return None
    for p in proxies:
        if _quality_of(p) == target:
            return p
    goal = quality_value(target)
    return min(proxies, key=lambda p: abs(quality_value(_quality_of(p)) - goal))


def _quality_of(proxy: Any) -> Optional[str]:
    if isinstance(proxy, dict):
        return proxy.get("quality")
    return getattr(proxy, "quality", None)


@dataclass(frozen=True)
class PlaybackResult:
    status_code: int
    body: Dict[str, Any]


# ─────────────────────────────────────────────────────────────
# 📺 Resolver
# ─────────────────────────────────────────────────────────────

class PlaybackResolver:
    def __init__(self, ctx, session: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.files = FileReconciler(ctx, session)
        self.transcoder = Transcoder(ctx, session)

    def stream_url(self, file_id: str, quality: str) -> str:
        return f"{self.settings.WORKER_URL}/proxy/{file_id}/{quality}.mp4"

    async def resolve(self, req: PlaybackIn) -> PlaybackResult:
        """
        Resolve playback for one file.

        Returns
        -------
        PlaybackResult
            200 with `streamUrl`, or 202 while proxies are being produced.

        Raises
        ------
        BadRequestError        not a video
        TranscodeFailedError   the last transcode failed (500)
        """
        record = await self.files.get(req.file_id)
        fid = str(record.id)
        if not record.is_video:
            raise BadRequestError("Not a video file", details={"fileType": record.file_type})

        job = record.transcoding or {}
        job_status = job.get("status")
        if job_status == TranscodeStatus.PROCESSING.value:
            return self._in_progress(fid, job)
        if job_status == TranscodeStatus.FAILED.value:
            raise TranscodeFailedError(file_id=fid, error=job.get("error"))

        proxies: List[FileProxy] = await self.files.proxies(record.id)
        if not proxies:
            return await self._auto_transcode(record.id)

        requested = (req.quality or "auto").strip()
        target = requested if requested and requested != "auto" else determine_optimal_quality(
            connection_speed=req.connection_speed,
            connection_type=req.connection_type,
            client_width=req.client_width,
        )
        chosen = find_closest_proxy(proxies, target)
        if chosen is None:  # pragma: no cover - proxies is non-empty here
            raise AppException(status_code=status.HTTP_404_NOT_FOUND, message="No matching proxy quality found")

        metadata = (record.frameio_data or {}).get("metadata") or {}
        return PlaybackResult(
            status_code=status.HTTP_200_OK,
            body={
                "success": True,
                "fileId": fid,
                "fileName": record.file_name,
                "streamUrl": self.stream_url(fid, chosen.quality),
                "quality": chosen.quality,
                "targetQuality": target,
                "availableQualities": [
                    {"quality": p.quality, "url": self.stream_url(fid, p.quality)} for p in proxies
                ],
                "metadata": {
                    "duration": metadata.get("duration"),
                    "width": metadata.get("width"),
                    "height": metadata.get("height"),
                },
            },
        )

    async def _auto_transcode(self, file_id) -> PlaybackResult:
        """
        Kick off the default ladder. Start failures are logged and still
        answered with a retryable 202; the client polls playback again.
        """
        fid = str(file_id)
        job_id: Optional[str] = None
        try:
            started = await self.transcoder.start(file_id, self.settings.PLAYBACK_DEFAULT_QUALITIES)
            job_id = started["jobId"]
            logger.info("Playback requested before proxies existed; transcode started (file_id=%s)", fid)
        except TranscodeConflictError:
            record = await self.files.get(file_id)
            job = record.transcoding or {}
            if job.get("status") == TranscodeStatus.PROCESSING.value:
                return self._in_progress(fid, job)
            logger.info("Transcode already being started by another request (file_id=%s)", fid)
        except (UpstreamServiceError, StorageError, BadRequestError) as e:
            logger.warning("Automatic transcode could not start (file_id=%s): %s", fid, e.message)

        return PlaybackResult(
            status_code=status.HTTP_202_ACCEPTED,
            body={
                "status": "transcoding",
                "fileId": fid,
                "jobId": job_id,
                "message": "Transcoding has been initiated automatically. Please try again later.",
            },
        )

    @staticmethod
    def _in_progress(file_id: str, job: Dict[str, Any]) -> PlaybackResult:
        return PlaybackResult(
            status_code=status.HTTP_202_ACCEPTED,
            body={
                "status": TranscodeStatus.PROCESSING.value,
                "fileId": file_id,
                "jobId": job.get("jobId"),
                "startedAt": job.get("startedAt"),
                "message": "Video is currently being transcoded. Please try again later.",
            },
        )


__all__ = [
    "PlaybackResolver",
    "PlaybackResult",
    "QUALITY_LADDER",
    "determine_optimal_quality",
    "quality_value",
    "find_closest_proxy",
]
