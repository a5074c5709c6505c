# reeldrop/services/lucidlink.py
from __future__ import annotations

"""
ReelDrop — LucidLink bridge client
==================================

Optional high-quality storage tier. The bridge server mounts the LucidLink
filespace and copies a proxy from a URL into
`{clientName}/{projectName}/{fileId}_{profile}.mp4`, returning the path.

Disabled unless `LUCIDLINK_ENABLED` is true.
"""

import logging
from typing import Any, Dict

import httpx

from reeldrop.core.config import secret_value
from reeldrop.core.exceptions import UpstreamServiceError
from reeldrop.db.models.file import File

logger = logging.getLogger(__name__)

SERVICE = "lucidlink"


class LucidLinkClient:
    def __init__(self, ctx) -> None:
        self.settings = ctx.settings
        self.http: httpx.AsyncClient = ctx.http

    @property
    def enabled(self) -> bool:
        return bool(self.settings.LUCIDLINK_ENABLED)

    async def store_proxy(self, record: File, *, proxy_url: str, profile: str) -> str:
        """Ask the bridge to copy `proxy_url` into the filespace; returns the stored path."""
        server = self.settings.LUCIDLINK_SERVER_URL
        token = secret_value(self.settings.LUCIDLINK_API_TOKEN)
        if not server or not token:
            raise UpstreamServiceError(SERVICE, "LucidLink server configuration missing")

        body: Dict[str, Any] = {
            "sourceUrl": proxy_url,
            "clientName": record.client_name,
            "projectName": record.project_name,
            "fileName": f"{record.id}_{profile}.mp4",
        }
        try:
            resp = await self.http.post(
                f"{server}/api/files/copy",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise UpstreamServiceError(SERVICE, f"LucidLink server unreachable: {e}") from e

        if not resp.is_success:
            raise UpstreamServiceError(
                SERVICE,
                f"LucidLink server error: {resp.text[:500] or resp.reason_phrase}",
                details={"status": resp.status_code},
            )
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        path = payload.get("path") if isinstance(payload, dict) else None
        if not path:
            raise UpstreamServiceError(SERVICE, "LucidLink server returned no path")
        logger.info("Stored proxy in LucidLink (file_id=%s, path=%s)", record.id, path)
        return path


__all__ = ["LucidLinkClient"]
