# reeldrop/services/archival.py
from __future__ import annotations

"""
🗄️ ReelDrop — Wasabi archival
=============================

Moves durable copies into the archive tier and records them in
`files.wasabi_data`.

- `archive_pending()`  — cron: server-side copy of originals
  `storage_key` → `archive/{fileId}/{fileName}` for `completed` files older
  than the threshold whose wasabi tier is not complete yet.
- `store_proxy_from_url()` — webhook: stream a proxy (or original) from a URL
  into `proxies/{client}/{project}/{fileId}/{stem}_{profile}.mp4`.

Per-item failures never abort a batch; they are written to the tier as
`status=error` and reported.
"""

import logging
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.exceptions import StorageError, UpstreamServiceError
from reeldrop.db.models.file import File
from reeldrop.repositories.files import FileRepository
from reeldrop.schemas.enums import StorageTier, TierStatus
from reeldrop.services.file_reconciler import FileReconciler
from reeldrop.services.storage import S3StorageError, sanitize_segment

logger = logging.getLogger(__name__)

SPOOL_MAX_BYTES = 64 * 1024 * 1024


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def archive_key_for(record: File) -> str:
    return f"archive/{record.id}/{sanitize_segment(record.file_name)}"


def proxy_key_for(record: File, profile: str) -> str:
    stem = record.file_name.rsplit(".", 1)[0] if "." in record.file_name else record.file_name
    return "/".join(
        [
            "proxies",
            sanitize_segment(record.client_name, "unknown-client"),
            sanitize_segment(record.project_name, "unknown-project"),
            str(record.id),
            f"{sanitize_segment(stem, 'file')}_{sanitize_segment(profile, 'proxy')}.mp4",
        ]
    )


class ArchivalService:
    def __init__(self, ctx, session: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.storage = ctx.archive
        self.repo = FileRepository(session)
        self.files = FileReconciler(ctx, session)

    async def archive_pending(self, days_threshold: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Archive originals of eligible files.

        Returns
        -------
        dict
            `{"archivedFiles", "failed": [{"fileId", "error"}], "scanned"}`
        """
        days = self.settings.ARCHIVE_DAYS_THRESHOLD if days_threshold is None else days_threshold
        cap = limit or self.settings.ARCHIVE_BATCH_LIMIT
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        candidates = [
            f for f in await self.repo.archive_candidates(created_before=cutoff)
            if (f.wasabi_data or {}).get("status") != TierStatus.COMPLETE.value
        ][:cap]

        archived: List[str] = []
        failed: List[Dict[str, str]] = []
        for record in candidates:
            key = archive_key_for(record)
            try:
                await self.storage.copy(record.storage_key, key)
            except S3StorageError as e:
                logger.warning("Archival failed (file_id=%s): %s", record.id, e)
                failed.append({"fileId": str(record.id), "error": str(e)})
                await self.files.apply_tier_update(
                    record.id, StorageTier.WASABI,
                    {"status": TierStatus.ERROR.value, "error": str(e), "lastAttemptAt": _now_iso()},
                )
                continue

            await self.files.apply_tier_update(
                record.id, StorageTier.WASABI,
                {"originalKey": key, "status": TierStatus.COMPLETE.value, "archivedAt": _now_iso(), "error": None},
            )
            archived.append(str(record.id))

        logger.info("Archival run: scanned=%d archived=%d failed=%d", len(candidates), len(archived), len(failed))
        return {"archivedFiles": len(archived), "archived": archived, "failed": failed, "scanned": len(candidates)}

    async def store_proxy_from_url(self, record: File, *, url: str, profile: str) -> str:
        """Stream `url` into the archive bucket; returns the object key."""
        key = proxy_key_for(record, profile)
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as buf:
            try:
                async with self.ctx.http.stream("GET", url) as resp:
                    if not resp.is_success:
                        raise UpstreamServiceError(
                            "proxy source", f"Failed to download proxy: HTTP {resp.status_code}",
                            details={"url": url},
                        )
                    async for chunk in resp.aiter_bytes():
                        buf.write(chunk)
            except httpx.HTTPError as e:
                raise UpstreamServiceError("proxy source", f"Failed to download proxy: {e}") from e

            buf.seek(0)
            try:
                await self.storage.upload_fileobj(key, buf, content_type="video/mp4")
            except S3StorageError as e:
                raise StorageError(f"Failed to store proxy in Wasabi: {e}") from e

        logger.info("Stored %s proxy in archive (file_id=%s, key=%s)", profile, record.id, key)
        return key


__all__ = ["ArchivalService", "archive_key_for", "proxy_key_for"]
