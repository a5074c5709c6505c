# reeldrop/services/file_reconciler.py
from __future__ import annotations

"""
🧮 ReelDrop — File Record Reconciler
====================================

Owns the canonical `File` record and reconciles what the independent tier
services report about it.

Guarantees
----------
- **Targeted merges**: a tier update merges a patch into *one* JSON column;
  the rest of the record is never rewritten.
- **Optimistic concurrency**: each merge is a compare-and-swap on `version`.
  A lost race re-reads and re-merges, up to `RECONCILE_MAX_ATTEMPTS`, then
  raises `ConcurrencyConflictError` (409).
- **Idempotent proxies**: `(file_id, quality)` is the natural key; replays
  update in place.
- **Forward-only status**: see `is_transition_allowed`.

Status machine
--------------
    uploading → processing → processed → completed      (forward only)
    uploading | processing → failed
    any non-terminal        → error                      (terminal)
"""

import logging
import re
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.exceptions import (
    AppException,
    BadRequestError,
    ConcurrencyConflictError,
    FileRecordNotFoundError,
    InvalidIdentifierError,
    StorageError,
)
from reeldrop.db.models.file import TIER_COLUMNS, File
from reeldrop.db.models.file_proxy import FileProxy
from reeldrop.repositories.files import FileRepository
from reeldrop.schemas.enums import BulkAction, FileStatus, StorageTier, TierStatus
from reeldrop.services.storage import S3StorageError

logger = logging.getLogger(__name__)

TierPatch = Union[Mapping[str, Any], Callable[[Dict[str, Any]], Dict[str, Any]]]

# ─────────────────────────────────────────────────────────────
# 🧭 Status machine
# ─────────────────────────────────────────────────────────────

MAIN_LINE: Tuple[FileStatus, ...] = (
    FileStatus.UPLOADING,
    FileStatus.PROCESSING,
    FileStatus.PROCESSED,
    FileStatus.COMPLETED,
)
TERMINAL = frozenset({FileStatus.ERROR, FileStatus.FAILED})
FAILABLE = frozenset({FileStatus.UPLOADING, FileStatus.PROCESSING})


def is_transition_allowed(current: FileStatus, target: FileStatus) -> bool:
    if current == target or current in TERMINAL:
        return False
    if target == FileStatus.ERROR:
        return True
    if target == FileStatus.FAILED:
        return current in FAILABLE
    if current in MAIN_LINE and target in MAIN_LINE:
        return MAIN_LINE.index(target) > MAIN_LINE.index(current)
    return False


_QUALITY_RE = re.compile(r"(\d{3,4}p)", re.IGNORECASE)


def derive_quality(profile: Optional[str]) -> Optional[str]:
    """`h264_1080p` → `1080p`; None when the profile carries no ladder label."""
    if not profile:
        return None
    m = _QUALITY_RE.search(profile)
    return m.group(1).lower() if m else None


def parse_file_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidIdentifierError(value=value, kind="file id")


# ─────────────────────────────────────────────────────────────
# 🧱 Reconciler
# ─────────────────────────────────────────────────────────────

class FileReconciler:
    """File record operations bound to one session and the service context."""

    def __init__(self, ctx, session: AsyncSession) -> None:
        self.ctx = ctx
        self.session = session
        self.repo = FileRepository(session)
        self.max_attempts = ctx.settings.RECONCILE_MAX_ATTEMPTS

    # ── reads ────────────────────────────────────────────────
    async def get(self, file_id: Any) -> File:
        fid = parse_file_id(file_id)
        record = await self.repo.get(fid)
        if record is None:
            raise FileRecordNotFoundError(file_id=str(fid))
        return record

    async def find_by_asset(self, asset_id: str) -> Optional[File]:
        return await self.repo.find_by_asset_id(asset_id)

    async def proxies(self, file_id: Any) -> List[FileProxy]:
        return await self.repo.list_proxies(parse_file_id(file_id))

    # ── creation ─────────────────────────────────────────────
    async def create_direct(
        self,
        *,
        file_name: str,
        file_size: int,
        file_type: str,
        storage_key: str,
        link_id: Optional[str],
        client_name: Optional[str],
        project_name: Optional[str],
    ) -> File:
        """Record for bytes already stored in the archive bucket (`completed`)."""
        record = await self.repo.create(
            file_name=file_name,
            file_size=int(file_size or 0),
            file_type=file_type,
            storage_key=storage_key,
            upload_link_id=link_id,
            client_name=client_name,
            project_name=project_name,
            status=FileStatus.COMPLETED,
        )
        await self.session.commit()
        logger.info("File registered (file_id=%s, key=%s)", record.id, storage_key)
        return record

    async def create_from_asset(
        self,
        asset_id: str,
        *,
        file_name: str,
        file_size: int = 0,
        file_type: str = "application/octet-stream",
        project_id: Optional[str] = None,
        link_id: Optional[str] = None,
        client_name: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> Tuple[File, bool]:
        """
        Create (or return) the record for a processing-platform asset.

        Returns
        -------
        (File, created)
            `created` is False when the asset was already known (replay).
        """
        existing = await self.repo.find_by_asset_id(asset_id)
        if existing is not None:
            return existing, False

        try:
            record = await self.repo.create(
                file_name=file_name,
                file_size=int(file_size or 0),
                file_type=file_type,
                upload_link_id=link_id,
                client_name=client_name,
                project_name=project_name,
                status=FileStatus.UPLOADING,
                frameio_asset_id=asset_id,
                frameio_data={
                    "assetId": asset_id,
                    "projectId": project_id,
                    "proxyStatus": TierStatus.PENDING.value,
                    "proxies": [],
                },
            )
            await self.session.commit()
        except IntegrityError:
            # Concurrent replay won the insert.
            await self.session.rollback()
            existing = await self.repo.find_by_asset_id(asset_id)
            if existing is None:
                raise
            return existing, False

        logger.info("Asset file created (file_id=%s, asset_id=%s)", record.id, asset_id)
        return record, True

    # ── tier updates (CAS) ───────────────────────────────────
    async def apply_tier_update(self, file_id: Any, tier: Union[StorageTier, str], patch: TierPatch) -> File:
        """
        Merge `patch` into one tier sub-document under compare-and-swap.

        Parameters
        ----------
        tier : StorageTier | str
            `frameio`, `r2`, `wasabi`, `lucidlink` or `transcoding`.
        patch : Mapping | Callable[[dict], dict]
            Keys to merge, or a function computing them from the current
            document (used when the new value depends on the old one).

        Raises
        ------
        ConcurrencyConflictError
            After `RECONCILE_MAX_ATTEMPTS` lost races.
        """
        fid = parse_file_id(file_id)
        tier_key = StorageTier(tier).value
        column = TIER_COLUMNS[tier_key]

        for attempt in range(1, self.max_attempts + 1):
            record = await self.repo.get(fid)
            if record is None:
                raise FileRecordNotFoundError(file_id=str(fid))

            current = dict(getattr(record, column) or {})
            changes = patch(current) if callable(patch) else dict(patch)
            merged = {**current, **changes}

            if await self.repo.cas_update(fid, record.version, {column: merged}):
                await self.session.commit()
                logger.debug("Tier %s updated (file_id=%s, attempt=%d)", tier_key, fid, attempt)
                return await self.get(fid)

            await self.session.rollback()
            logger.info("Version conflict on %s (file_id=%s, attempt=%d)", tier_key, fid, attempt)

        raise ConcurrencyConflictError(file_id=str(fid), attempts=self.max_attempts)

    # ── proxies ──────────────────────────────────────────────
    async def upsert_proxies(self, file_id: Any, proxies: Iterable[Mapping[str, Any]]) -> List[FileProxy]:
        """
        Insert or update proxies by `(file_id, quality)`; replays never duplicate.

        Every entry is labelled before the first write, so a bad entry leaves
        the stored proxies untouched.
        """
        fid = parse_file_id(file_id)
        labelled = []
        for item in proxies:
            quality = (item.get("quality") or derive_quality(item.get("profile")) or "").strip()
            if not quality:
                raise BadRequestError("Proxy quality missing", details={"proxy": dict(item)})
            labelled.append((quality, item))

        for quality, item in labelled:
            fields = {
                k: item.get(src)
                for k, src in (("profile", "profile"), ("url", "url"), ("r2_key", "r2Key"), ("wasabi_key", "wasabiKey"))
                if item.get(src) is not None
            }

            if await self.repo.get_proxy(fid, quality) is not None:
                await self.repo.update_proxy(fid, quality, fields)
                await self.session.commit()
                continue
            try:
                await self.repo.insert_proxy(fid, quality, fields)
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                await self.repo.update_proxy(fid, quality, fields)
                await self.session.commit()

        return await self.repo.list_proxies(fid)

    # ── status ───────────────────────────────────────────────
    async def advance_status(self, file_id: Any, target: FileStatus) -> File:
        """
        Move the record to `target` if the machine allows it.

        Disallowed moves (backwards, sideways, out of a terminal state) are
        no-ops that return the record unchanged.
        """
        fid = parse_file_id(file_id)
        target = FileStatus(target)
        for _ in range(self.max_attempts):
            record = await self.get(fid)
            current = FileStatus(record.status)
            if not is_transition_allowed(current, target):
                return record
            if await self.repo.transition_status(fid, current, target):
                await self.session.commit()
                logger.info("File status %s → %s (file_id=%s)", current.value, target.value, fid)
                return await self.get(fid)
            await self.session.rollback()
        raise ConcurrencyConflictError(file_id=str(fid), attempts=self.max_attempts)

    async def fail(self, file_id: Any, error: Optional[str] = None) -> File:
        record = await self.advance_status(file_id, FileStatus.ERROR)
        if error:
            logger.warning("File marked as error (file_id=%s): %s", record.id, error)
        return record

    async def promote_if_durable(self, file_id: Any) -> File:
        """`processed` → `completed` once an original is stored durably."""
        record = await self.get(file_id)
        if FileStatus(record.status) != FileStatus.PROCESSED:
            return record
        wasabi = record.wasabi_data or {}
        durable = bool(record.storage_key) or (
            wasabi.get("status") == TierStatus.COMPLETE.value and bool(wasabi.get("originalKey"))
        )
        if not durable:
            return record
        return await self.advance_status(record.id, FileStatus.COMPLETED)

    # ── bulk ─────────────────────────────────────────────────
    async def bulk(
        self,
        action: BulkAction,
        file_ids: Iterable[str],
        *,
        status: Optional[FileStatus] = None,
    ) -> Dict[str, Any]:
        """
        Apply `action` to each file, collecting per-item results.

        Returns
        -------
        dict
            `{"success": [...], "failed": [{"fileId", "error"}]}`; downloads add
            `"downloads": [{"fileId", "fileName", "url"}]`.
        """
        action = BulkAction(action)
        if action == BulkAction.STATUS_UPDATE and status is None:
            raise BadRequestError("status is required for status-update")

        result: Dict[str, Any] = {"success": [], "failed": []}
        if action == BulkAction.DOWNLOAD:
            result["downloads"] = []

        for raw_id in file_ids:
            try:
                if action == BulkAction.DELETE:
                    await self._delete_one(raw_id)
                elif action == BulkAction.DOWNLOAD:
                    result["downloads"].append(await self._download_one(raw_id))
                else:
                    await self._status_one(raw_id, status)
                result["success"].append(raw_id)
            except AppException as e:
                result["failed"].append({"fileId": raw_id, "error": e.message})

        logger.info(
            "Bulk %s: %d ok, %d failed",
            action.value, len(result["success"]), len(result["failed"]),
        )
        return result

    async def _delete_one(self, raw_id: str) -> None:
        record = await self.get(raw_id)
        archive, edge = self.ctx.archive, self.ctx.edge

        archive_keys = [record.storage_key, (record.wasabi_data or {}).get("originalKey")]
        archive_keys += list((record.wasabi_data or {}).get("proxyKeys") or [])
        edge_keys = list((record.r2_data or {}).get("keys") or [])
        for proxy in await self.repo.list_proxies(record.id):
            if proxy.r2_key:
                edge_keys.append(proxy.r2_key)
            if proxy.wasabi_key:
                archive_keys.append(proxy.wasabi_key)

        for gateway, keys in ((archive, archive_keys), (edge, edge_keys)):
            for key in dict.fromkeys(k.get("key") if isinstance(k, dict) else k for k in keys):
                if not key:
                    continue
                try:
                    await gateway.delete(key)
                except S3StorageError as e:
                    logger.warning("Skipping undeletable key %s (file_id=%s): %s", key, record.id, e)

        await self.repo.delete(record.id)
        await self.session.commit()
        logger.info("File deleted (file_id=%s)", record.id)

    async def _download_one(self, raw_id: str) -> Dict[str, Any]:
        record = await self.get(raw_id)
        if FileStatus(record.status) != FileStatus.COMPLETED:
            raise BadRequestError("File is not ready for download")
        if not record.storage_key:
            raise BadRequestError("File has no stored original")
        try:
            url = await self.ctx.archive.presigned_get(
                record.storage_key,
                expires_in=self.ctx.settings.DOWNLOAD_URL_TTL_SECONDS,
                response_content_disposition=f'attachment; filename="{record.file_name}"',
            )
        except S3StorageError as e:
            raise StorageError(str(e)) from e
        return {"fileId": raw_id, "fileName": record.file_name, "url": url}

    async def _status_one(self, raw_id: str, status: FileStatus) -> None:
        record = await self.advance_status(raw_id, status)
        if FileStatus(record.status) != status:
            raise BadRequestError(f"Invalid transition from {FileStatus(record.status).value} to {status.value}")


__all__ = [
    "FileReconciler",
    "is_transition_allowed",
    "derive_quality",
    "parse_file_id",
]
