# reeldrop/services/webhook_ingest.py
from __future__ import annotations

"""
📬 ReelDrop — Webhook Ingest
============================

Single entrypoint for callbacks from the processing platform, the transcoding
worker and the storage workers.

Flow
----
1) Shared secret (`X-Worker-Secret`) compared in constant time → 401
2) Dispatch by event type through a table of handlers
3) Handlers write through the reconciler only (CAS tier merges, natural-key
   proxy upserts), so replays are safe

Events
------
- `asset.ready`          create/find the asset-based file
- `proxy.ready`          proxies + frameio/r2/wasabi tiers, → processed
- `transcode.completed`  job must match; proxies, → processed
- `transcode.failed`     job failed, file → error
- `lucidlink.store`      copy a proxy into LucidLink (if enabled)
- `wasabi.store`         stream a proxy/original into the archive bucket

Unknown events are acknowledged with 200 and `handled: false`.
"""

import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.config import secret_value
from reeldrop.core.exceptions import (
    BadRequestError,
    FileRecordNotFoundError,
    LinkNotFoundError,
    UpstreamServiceError,
    WebhookAuthError,
)
from reeldrop.db.models.file import File
from reeldrop.schemas.enums import FileStatus, StorageTier, TierStatus, TranscodeStatus
from reeldrop.services.archival import ArchivalService
from reeldrop.services.file_reconciler import FileReconciler, derive_quality
from reeldrop.services.link_registry import LinkRegistry
from reeldrop.services.lucidlink import LucidLinkClient

logger = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], Awaitable[Dict[str, Any]]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(data: Mapping[str, Any], *names: str) -> Any:
    """First non-empty value among camelCase/snake_case spellings."""
    for name in names:
        value = data.get(name)
        if value not in (None, ""):
            return value
    return None


def _require(data: Mapping[str, Any], **fields: tuple) -> Dict[str, Any]:
    """Resolve required fields (each given as alternative spellings) or raise 400."""
    out: Dict[str, Any] = {}
    missing: List[str] = []
    for label, names in fields.items():
        value = _pick(data, *names)
        if value is None:
            missing.append(label)
        out[label] = value
    if missing:
        raise BadRequestError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})
    return out


def verify_shared_secret(expected: Optional[str], provided: Optional[str]) -> None:
    """Constant-time secret check; an unset server secret rejects everything."""
    if not expected or not provided:
        raise WebhookAuthError()
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise WebhookAuthError()


class WebhookIngest:
    def __init__(self, ctx, session: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.files = FileReconciler(ctx, session)
        self.links = LinkRegistry(session)
        self.archival = ArchivalService(ctx, session)
        self.lucidlink = LucidLinkClient(ctx)
        self._handlers: Dict[str, Handler] = {
            "asset.ready": self._asset_ready,
            "proxy.ready": self._proxy_ready,
            "transcode.completed": self._transcode_completed,
            "transcode.failed": self._transcode_failed,
            "lucidlink.store": self._lucidlink_store,
            "wasabi.store": self._wasabi_store,
        }

    async def handle(self, secret: Optional[str], event_type: Optional[str], payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Authenticate and dispatch one event.

        Raises
        ------
        WebhookAuthError   missing/incorrect secret (401)
        BadRequestError    missing payload fields, job id mismatch (400)
        """
        verify_shared_secret(secret_value(self.settings.WEBHOOK_SECRET), secret)

        handler = self._handlers.get(event_type or "")
        if handler is None:
            logger.info("Webhook event ignored (type=%s)", event_type)
            return {"handled": False, "message": f"Event type {event_type} not handled"}

        logger.info("Webhook event received (type=%s)", event_type)
        result = await handler(payload or {})
        return {"handled": True, "event": event_type, **result}

    # ── lookups ──────────────────────────────────────────────
    async def _locate(self, data: Mapping[str, Any]) -> File:
        file_id = _pick(data, "fileId", "file_id")
        if file_id:
            return await self.files.get(file_id)
        asset_id = _pick(data, "assetId", "asset_id")
        if not asset_id:
            raise BadRequestError("Missing required fields: fileId or assetId")
        record = await self.files.find_by_asset(asset_id)
        if record is None:
            raise FileRecordNotFoundError(file_id=f"asset:{asset_id}")
        return record

    # ── platform events ──────────────────────────────────────
    async def _asset_ready(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        req = _require(data, assetId=("assetId", "asset_id"))
        link_id = _pick(data, "linkId", "link_id")

        client_name = _pick(data, "clientName", "client_name")
        project_name = _pick(data, "projectName", "project_name")
        if link_id:
            link = await self.links.repo.get_by_token(link_id)
            if link is None:
                raise LinkNotFoundError(link_id=link_id)
            client_name = client_name or link.client_name
            project_name = project_name or link.project_name

        record, created = await self.files.create_from_asset(
            req["assetId"],
            file_name=_pick(data, "fileName", "filename", "name") or "unknown",
            file_size=int(_pick(data, "fileSize", "filesize") or 0),
            file_type=_pick(data, "fileType", "filetype") or "video/mp4",
            project_id=_pick(data, "projectId", "project_id"),
            link_id=link_id,
            client_name=client_name,
            project_name=project_name,
        )
        if created and link_id:
            await self.links.record_upload(link_id)
        return {"fileId": str(record.id), "assetId": req["assetId"], "created": created}

    async def _proxy_ready(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        record = await self._locate(data)
        raw = data.get("proxies") or data.get("r2Proxies") or data.get("allProxies") or []
        proxies = [
            {
                "quality": p.get("quality") or derive_quality(p.get("profile")),
                "profile": p.get("profile"),
                "url": p.get("url"),
                "r2Key": _pick(p, "r2Key", "r2_key", "key"),
                "wasabiKey": _pick(p, "wasabiKey", "wasabi_key"),
            }
            for p in raw
            if isinstance(p, Mapping)
        ]
        playable = [p for p in proxies if p["quality"]]
        if len(playable) < len(proxies):
            logger.warning(
                "proxy.ready: %d proxies without a ladder quality kept on the frameio tier only (file_id=%s)",
                len(proxies) - len(playable), record.id,
            )
        stored = await self.files.upsert_proxies(record.id, playable) if playable else []
        r2_keys = [p["r2Key"] for p in proxies if p["r2Key"]]

        await self.files.apply_tier_update(
            record.id, StorageTier.FRAMEIO,
            {
                "proxyStatus": TierStatus.COMPLETE.value,
                "proxies": [{"profile": p["profile"], "quality": p["quality"], "r2Key": p["r2Key"]} for p in proxies],
            },
        )
        await self.files.apply_tier_update(
            record.id, StorageTier.R2,
            lambda cur: {
                "keys": sorted(set(cur.get("keys") or []) | set(r2_keys)),
                "status": TierStatus.COMPLETE.value,
                "lastAccessed": _now_iso(),
            },
        )
        # Archival is picked up by the cron task; never downgrade a complete tier.
        await self.files.apply_tier_update(
            record.id, StorageTier.WASABI,
            lambda cur: {} if cur.get("status") == TierStatus.COMPLETE.value else {"status": TierStatus.PENDING.value},
        )

        await self.files.advance_status(record.id, FileStatus.PROCESSED)
        record = await self.files.promote_if_durable(record.id)
        return {
            "fileId": str(record.id),
            "assetId": (record.frameio_data or {}).get("assetId"),
            "status": FileStatus(record.status).value,
            "proxies": [p.quality for p in stored],
        }

    # ── transcoding worker ───────────────────────────────────
    async def _matching_job(self, data: Mapping[str, Any]) -> tuple:
        req = _require(data, fileId=("fileId", "file_id"), jobId=("jobId", "job_id"))
        record = await self.files.get(req["fileId"])
        job = record.transcoding or {}
        if job.get("jobId") != req["jobId"]:
            raise BadRequestError("Invalid job ID", details={"fileId": str(record.id), "jobId": req["jobId"]})
        return record, job

    async def _transcode_completed(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        record, job = await self._matching_job(data)
        qualities = list(data.get("qualities") or job.get("qualities") or [])
        fid = str(record.id)

        await self.files.apply_tier_update(
            record.id, StorageTier.TRANSCODING,
            {
                "status": TranscodeStatus.COMPLETED.value,
                "completedAt": job.get("completedAt") or _now_iso(),
                "completedQualities": qualities,
                "error": None,
            },
        )
        base = self.settings.WORKER_URL
        stored = await self.files.upsert_proxies(
            record.id, [{"quality": q, "url": f"{base}/proxy/{fid}/{q}.mp4"} for q in qualities]
        )
        await self.files.advance_status(record.id, FileStatus.PROCESSED)
        record = await self.files.promote_if_durable(record.id)
        return {
            "fileId": fid,
            "jobId": job.get("jobId"),
            "status": FileStatus(record.status).value,
            "proxies": [p.quality for p in stored],
            "message": "Transcoding status updated to completed",
        }

    async def _transcode_failed(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        record, job = await self._matching_job(data)
        error = str(data.get("error") or "Unknown error during transcoding")
        await self.files.apply_tier_update(
            record.id, StorageTier.TRANSCODING,
            {"status": TranscodeStatus.FAILED.value, "error": error, "failedAt": _now_iso()},
        )
        record = await self.files.fail(record.id, error)
        return {
            "fileId": str(record.id),
            "jobId": job.get("jobId"),
            "status": FileStatus(record.status).value,
            "message": "Transcoding status updated to failed",
        }

    # ── storage workers ──────────────────────────────────────
    async def _lucidlink_store(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        req = _require(
            data,
            fileId=("fileId", "file_id"),
            proxyUrl=("proxyUrl", "proxy_url", "url"),
            proxyProfile=("proxyProfile", "proxy_profile", "profile"),
        )
        if not self.lucidlink.enabled:
            return {"success": False, "message": "LucidLink integration is not enabled"}

        record = await self.files.get(req["fileId"])
        try:
            path = await self.lucidlink.store_proxy(record, proxy_url=req["proxyUrl"], profile=req["proxyProfile"])
        except UpstreamServiceError as e:
            await self.files.apply_tier_update(
                record.id, StorageTier.LUCIDLINK, {"status": TierStatus.ERROR.value, "error": e.message}
            )
            raise

        await self.files.apply_tier_update(
            record.id, StorageTier.LUCIDLINK,
            {"path": path, "status": TierStatus.COMPLETE.value, "copiedAt": _now_iso(), "error": None},
        )
        return {"success": True, "message": "File stored in LucidLink", "fileId": str(record.id), "path": path}

    async def _wasabi_store(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        req = _require(
            data,
            fileId=("fileId", "file_id"),
            proxyUrl=("proxyUrl", "proxy_url", "url"),
            proxyProfile=("proxyProfile", "proxy_profile", "profile"),
        )
        record = await self.files.get(req["fileId"])
        profile = str(req["proxyProfile"])
        key = await self.archival.store_proxy_from_url(record, url=req["proxyUrl"], profile=profile)

        if profile == "original":
            patch: Any = {"originalKey": key, "status": TierStatus.COMPLETE.value, "archivedAt": _now_iso()}
        else:
            def patch(cur: Dict[str, Any]) -> Dict[str, Any]:
                entries = [e for e in (cur.get("proxyKeys") or []) if e.get("profile") != profile]
                entries.append({"profile": profile, "key": key, "uploadedAt": _now_iso()})
                return {"proxyKeys": entries, "status": TierStatus.COMPLETE.value}

        await self.files.apply_tier_update(record.id, StorageTier.WASABI, patch)
        record = await self.files.promote_if_durable(record.id)
        return {
            "success": True,
            "message": f"Stored {profile} in Wasabi for file {record.id}",
            "fileId": str(record.id),
            "wasabiKey": key,
        }


__all__ = ["WebhookIngest", "verify_shared_secret"]
