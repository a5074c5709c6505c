# reeldrop/services/upload_coordinator.py
from __future__ import annotations

"""
📤 ReelDrop — Chunk/Multipart Upload Coordinator
================================================

Issues short-lived storage credentials for validated upload links and records
finished uploads. Bytes never pass through the API: clients PUT straight to the
archive bucket.

Strategies
----------
- **direct**     one presigned PUT  (`uploads/{linkId}/{fileName}`)
- **multipart**  initialize → part URLs (batched) → complete | abort
                 (`uploads/{linkId}/{epochMillis}_{fileName}`)
- **batch**      N pre-allocated placeholder PUTs, resolved at registration
                 (`uploads/{linkId}/{token}_placeholder`)

`plan(file_size)` picks direct vs multipart from the declared size.

Failure semantics
-----------------
- Link rejections (404/403) happen before any presign call.
- Part URL batches are all-or-nothing.
- A failed completion (or one without `Location`) is compensated with an
  abort so no orphaned parts are billed.
"""

import asyncio
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, status
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.exceptions import AppException, BadRequestError, LinkNotFoundError, StorageError
from reeldrop.core.config import MIB
from reeldrop.schemas.enums import UploadStrategy
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
from reeldrop.services.file_reconciler import FileReconciler
from reeldrop.services.link_registry import LinkContext, LinkRegistry
from reeldrop.services.storage import MAX_PARTS, S3StorageError, sanitize_segment

logger = logging.getLogger(__name__)

MIN_PART_SIZE = 5 * MIB
CACHE_FOREVER = "max-age=31536000"
PLACEHOLDER = "_placeholder"
BATCH_CONTENT_TYPE = "application/octet-stream"
BATCH_TOKEN_LENGTH = 10


# ─────────────────────────────────────────────────────────────
# 🧮 Planning & key helpers (pure)
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class UploadPlan:
    strategy: UploadStrategy
    file_size: int
    part_size: Optional[int] = None
    part_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"strategy": self.strategy.value, "fileSize": self.file_size}
        if self.strategy == UploadStrategy.MULTIPART:
            body.update(partSize=self.part_size, partCount=self.part_count)
        return body


def plan_upload(file_size: int, *, threshold: int, part_size: int) -> UploadPlan:
    """
    Choose the upload strategy for a declared size.

    Multipart parts start at `part_size` (never below 5 MiB) and grow until the
    upload fits in 10 000 parts.
    """
    size = max(0, int(file_size))
    if size < threshold:
        return UploadPlan(strategy=UploadStrategy.DIRECT, file_size=size)

    chunk = max(MIN_PART_SIZE, int(part_size))
    if math.ceil(size / chunk) > MAX_PARTS:
        chunk = math.ceil(size / MAX_PARTS)
        chunk = math.ceil(chunk / MIB) * MIB
    count = max(1, math.ceil(size / chunk))
    return UploadPlan(strategy=UploadStrategy.MULTIPART, file_size=size, part_size=chunk, part_count=count)


def upload_prefix(link_id: str) -> str:
    return f"uploads/{link_id}/"


def resolve_placeholder_key(storage_key: str, file_name: str) -> str:
    """
    Map a pre-allocated placeholder key to its final key.

    - `.../{id}_placeholder`         → `.../{id}/{fileName}`
    - `.../{id}_placeholder_{name}`  → `.../{id}/{name}`
    - anything else is returned unchanged
    """
    if f"{PLACEHOLDER}_" in storage_key:
        head, _, tail = storage_key.partition(f"{PLACEHOLDER}_")
        if tail:
            return f"{head}/{tail}"
    if storage_key.endswith(PLACEHOLDER):
        return f"{storage_key[: -len(PLACEHOLDER)]}/{sanitize_segment(file_name)}"
    return storage_key


def _epoch_ms(dt: Optional[datetime] = None) -> int:
    return int((dt or datetime.now(timezone.utc)).timestamp() * 1000)


# ─────────────────────────────────────────────────────────────
# 📤 Coordinator
# ─────────────────────────────────────────────────────────────

class UploadCoordinator:
    """Upload orchestration over the archive bucket."""

    def __init__(self, ctx, session: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.storage = ctx.archive
        self.session = session
        self.links = LinkRegistry(session)
        self.files = FileReconciler(ctx, session)

    def plan(self, file_size: int) -> UploadPlan:
        return plan_upload(
            file_size,
            threshold=self.settings.MULTIPART_THRESHOLD_BYTES,
            part_size=self.settings.MULTIPART_PART_SIZE_BYTES,
        )

    # ── auto-selected ────────────────────────────────────────
    async def init(self, data: UploadInitIn) -> Dict[str, Any]:
        """Validate, plan and start the chosen strategy in one call."""
        plan = self.plan(data.file_size)
        if plan.strategy == UploadStrategy.DIRECT:
            started = await self.presign_direct(
                PresignedUploadIn(
                    link_id=data.link_id, file_name=data.file_name,
                    file_type=data.file_type, file_size=data.file_size,
                )
            )
        else:
            started = await self.initialize_multipart(
                MultipartInitIn(
                    link_id=data.link_id, file_name=data.file_name,
                    file_type=data.file_type, file_size=data.file_size,
                )
            )
        return {**plan.to_dict(), **started}

    # ── direct ───────────────────────────────────────────────
    async def presign_direct(self, data: PresignedUploadIn) -> Dict[str, Any]:
        link = await self.links.validate(data.link_id)
        key = f"{upload_prefix(link.link_id)}{sanitize_segment(data.file_name)}"
        try:
            url = await self.storage.presigned_put(
                key, content_type=data.file_type, expires_in=self.settings.PRESIGN_TTL_SECONDS
            )
        except S3StorageError as e:
            raise StorageError(f"Failed to generate upload URL: {e}") from e
        return {
            "uploadUrl": url,
            "storageKey": key,
            "clientName": link.client_name,
            "projectName": link.project_name,
            "linkId": link.link_id,
        }

    # ── batch placeholders ───────────────────────────────────
    async def presign_batch(self, data: BatchUrlsIn) -> Dict[str, Any]:
        link = await self.links.validate(data.link_id)
        count = min(data.count or self.settings.BATCH_URL_DEFAULT_COUNT, self.settings.BATCH_URL_MAX_COUNT)
        ttl = self.settings.PRESIGN_TTL_SECONDS

        ids = [secrets.token_urlsafe(8)[:BATCH_TOKEN_LENGTH] for _ in range(count)]
        keys = [f"{upload_prefix(link.link_id)}{i}{PLACEHOLDER}" for i in ids]
        try:
            urls = await asyncio.gather(
                *(self.storage.presigned_put(k, content_type=BATCH_CONTENT_TYPE, expires_in=ttl) for k in keys)
            )
        except S3StorageError as e:
            raise StorageError(f"Failed to generate upload URLs: {e}") from e

        expires = _epoch_ms() + ttl * 1000
        return {
            "urls": [
                {"id": i, "url": u, "storageKey": k, "expires": expires}
                for i, u, k in zip(ids, urls, keys)
            ],
            "clientName": link.client_name,
            "projectName": link.project_name,
            "linkId": link.link_id,
        }

    # ── multipart ────────────────────────────────────────────
    async def initialize_multipart(self, data: MultipartInitIn) -> Dict[str, Any]:
        link = await self.links.validate(data.link_id)
        key = f"{upload_prefix(link.link_id)}{_epoch_ms()}_{sanitize_segment(data.file_name)}"
        try:
            upload_id = await self.storage.create_multipart_upload(
                key, content_type=data.file_type, cache_control=CACHE_FOREVER
            )
        except S3StorageError as e:
            raise StorageError(f"Failed to initialize multipart upload: {e}") from e

        logger.info("Multipart upload started (link_id=%s, key=%s)", link.link_id, key)
        return {
            "uploadId": upload_id,
            "storageKey": key,
            "clientName": link.client_name,
            "projectName": link.project_name,
        }

    async def part_urls(self, data: PartUrlsIn) -> Dict[str, Any]:
        """
        Presign one URL per requested part number, concurrently.

        The batch is all-or-nothing: if any signature fails the whole request
        fails and no URLs are returned.
        """
        link = await self.links.validate(data.link_id)
        self._assert_owned_key(link, data.storage_key)
        numbers = data.requested_parts()
        if not numbers:
            raise BadRequestError("Missing required parameters (partNumbers or partNumber)")

        ttl = self.settings.PRESIGN_TTL_SECONDS
        try:
            urls = await asyncio.gather(
                *(
                    self.storage.presigned_part_url(data.storage_key, data.upload_id, n, expires_in=ttl)
                    for n in numbers
                )
            )
        except S3StorageError as e:
            raise StorageError(f"Failed to generate part URLs: {e}") from e

        if not data.is_batch:
            return {"presignedUrl": urls[0], "partNumber": numbers[0]}
        return {
            "success": True,
            "presignedUrls": [{"partNumber": n, "presignedUrl": u} for n, u in zip(numbers, urls)],
            "uploadId": data.upload_id,
            "storageKey": data.storage_key,
        }

    async def complete_multipart(self, data: MultipartCompleteIn) -> Dict[str, Any]:
        """
        Finalize a multipart upload.

        Steps
        -----
        1) Reject an empty part list (400)
        2) De-duplicate by part number (last ETag wins), sort ascending
        3) Complete; on failure or a response without `Location`, abort and 500
        """
        if data.link_id:
            link = await self.links.validate(data.link_id)
            self._assert_owned_key(link, data.storage_key)
        if not data.parts:
            raise BadRequestError("Missing or invalid required parameters (uploadId, storageKey, parts)")

        latest: Dict[int, str] = {}
        for part in data.parts:
            latest[part.part_number] = part.etag
        parts = [{"PartNumber": n, "ETag": latest[n]} for n in sorted(latest)]

        try:
            resp = await self.storage.complete_multipart_upload(data.storage_key, data.upload_id, parts)
        except S3StorageError as e:
            await self._compensating_abort(data.storage_key, data.upload_id)
            raise StorageError(f"Failed to complete multipart upload: {e}") from e

        location = resp.get("Location")
        if not location:
            await self._compensating_abort(data.storage_key, data.upload_id)
            raise StorageError("Failed to complete multipart upload", details={"uploadId": data.upload_id})

        logger.info("Multipart upload completed (key=%s, parts=%d)", data.storage_key, len(parts))
        return {"success": True, "location": location, "storageKey": data.storage_key, "etag": resp.get("ETag")}

    async def abort_multipart(self, data: MultipartAbortIn) -> Dict[str, Any]:
        if data.link_id:
            link = await self.links.validate(data.link_id)
            self._assert_owned_key(link, data.storage_key)
        try:
            await self.storage.abort_multipart_upload(data.storage_key, data.upload_id)
        except S3StorageError as e:
            raise StorageError(f"Failed to abort multipart upload: {e}") from e
        logger.info("Multipart upload aborted by client (key=%s)", data.storage_key)
        return {"success": True, "uploadId": data.upload_id, "storageKey": data.storage_key}

    async def sweep_stale_multipart(self, older_than_hours: Optional[int] = None) -> Dict[str, Any]:
        """Abort in-progress multipart uploads under `uploads/` older than the cutoff."""
        hours = older_than_hours or self.settings.STALE_MULTIPART_HOURS
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        try:
            uploads = await self.storage.list_multipart_uploads(prefix="uploads/")
        except S3StorageError as e:
            raise StorageError(f"Failed to list multipart uploads: {e}") from e

        aborted, failed, kept = 0, 0, 0
        for up in uploads:
            initiated = up.initiated
            if initiated is not None and initiated.tzinfo is None:
                initiated = initiated.replace(tzinfo=timezone.utc)
            if initiated is None or initiated >= cutoff:
                kept += 1
                continue
            try:
                await self.storage.abort_multipart_upload(up.key, up.upload_id)
                aborted += 1
            except S3StorageError as e:
                failed += 1
                logger.warning("Stale multipart abort failed (key=%s): %s", up.key, e)

        logger.info("Multipart sweep: scanned=%d aborted=%d failed=%d kept=%d", len(uploads), aborted, failed, kept)
        return {"scanned": len(uploads), "aborted": aborted, "failed": failed, "kept": kept, "olderThanHours": hours}

    # ── registration ─────────────────────────────────────────
    async def register(self, data: RegisterUploadIn, background: Optional[BackgroundTasks] = None) -> Dict[str, Any]:
        """
        Record an upload whose bytes are already in storage.

        Link expiry is not re-checked here; only existence is required.
        The notification is sent after the response when `background` is given.
        """
        missing = [
            name for name, value in (
                ("fileName", data.file_name), ("fileSize", data.file_size), ("fileType", data.file_type),
                ("linkId", data.link_id), ("storageKey", data.storage_key),
            )
            if value in (None, "")
        ]
        if missing:
            raise BadRequestError("Missing required fields", details={"missing": missing})

        link = await self.links.repo.get_by_token(data.link_id)
        if link is None:
            raise LinkNotFoundError(link_id=data.link_id)
        link_ctx = LinkContext(link_id=link.link_id, client_name=link.client_name, project_name=link.project_name)

        storage_key = await self._resolve_storage_key(data.storage_key, data.file_name)
        record = await self.files.create_direct(
            file_name=data.file_name,
            file_size=data.file_size,
            file_type=data.file_type,
            storage_key=storage_key,
            link_id=link_ctx.link_id,
            client_name=data.client_name or link_ctx.client_name,
            project_name=data.project_name or link_ctx.project_name,
        )
        await self.links.record_upload(link_ctx.link_id)

        notify_kwargs = dict(
            file_id=str(record.id),
            file_name=record.file_name,
            file_size=record.file_size,
            client_name=record.client_name,
            project_name=record.project_name,
            link_id=link_ctx.link_id,
        )
        if background is not None:
            background.add_task(self.ctx.notifier.send_upload_completed, **notify_kwargs)
        else:
            await self.ctx.notifier.send_upload_completed(**notify_kwargs)

        return {"message": "File registered successfully", "fileId": str(record.id), "storageKey": storage_key}

    # ── internals ────────────────────────────────────────────
    @staticmethod
    def _assert_owned_key(link: LinkContext, storage_key: str) -> None:
        if not storage_key.startswith(upload_prefix(link.link_id)) or ".." in storage_key:
            raise AppException(
                status_code=status.HTTP_403_FORBIDDEN,
                message="Storage key does not belong to this upload link",
                details={"storageKey": storage_key},
            )

    async def _resolve_storage_key(self, storage_key: str, file_name: str) -> str:
        final_key = resolve_placeholder_key(storage_key, file_name)
        if final_key == storage_key:
            return storage_key
        try:
            if await self.storage.exists(storage_key):
                await self.storage.move(storage_key, final_key)
                logger.info("Placeholder object moved %s → %s", storage_key, final_key)
        except S3StorageError as e:
            raise StorageError(f"Failed to finalize placeholder upload: {e}") from e
        return final_key

    async def _compensating_abort(self, storage_key: str, upload_id: str) -> None:
        try:
            await self.storage.abort_multipart_upload(storage_key, upload_id)
            logger.warning("Multipart upload aborted after failed completion (key=%s)", storage_key)
        except S3StorageError as e:
            logger.error("Compensating abort failed (key=%s, upload_id=%s): %s", storage_key, upload_id, e)


__all__ = [
    "UploadCoordinator",
    "UploadPlan",
    "plan_upload",
    "resolve_placeholder_key",
    "upload_prefix",
]
