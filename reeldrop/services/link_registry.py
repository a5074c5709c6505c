# reeldrop/services/link_registry.py
from __future__ import annotations

"""
🔗 ReelDrop — Upload Link Registry
==================================

Persisted upload links keyed by a public token. `validate()` is the sole
authorization gate of the public upload surface and is called **before** any
storage credential is issued.

Rejection order
---------------
1. 404 `Invalid upload link`              (unknown token)
2. 403 `Upload link is inactive`          (`is_active` false)
3. 403 `Upload link has expired`          (`expires_at` in the past)
4. 403 `Upload link has reached its upload limit`  (`max_uploads` reached)
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.core.exceptions import (
    LinkExhaustedError,
    LinkExpiredError,
    LinkInactiveError,
    LinkNotFoundError,
)
from reeldrop.db.models.upload_link import UploadLink
from reeldrop.repositories.links import UploadLinkRepository
from reeldrop.schemas.links import LinkCreateIn

logger = logging.getLogger(__name__)

LINK_TOKEN_BYTES = 9  # token_urlsafe(9) -> 12 chars


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class LinkContext:
    """What an upload endpoint needs to know about a validated link."""
    link_id: str
    client_name: str
    project_name: str


class LinkRegistry:
    """Link lookup, validation and admin operations on one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.repo = UploadLinkRepository(session)

    # ── validation ───────────────────────────────────────────
    async def validate(self, link_id: str, *, now: Optional[datetime] = None) -> LinkContext:
        """Return the link context or raise the first applicable rejection."""
        link = await self.repo.get_by_token(link_id)
        if link is None:
            raise LinkNotFoundError(link_id=link_id)
        if not link.is_active:
            raise LinkInactiveError(link_id=link_id)
        now = now or datetime.now(timezone.utc)
        expires_at = _as_utc(link.expires_at)
        if expires_at is not None and expires_at < now:
            raise LinkExpiredError(link_id=link_id)
        if link.max_uploads is not None and (link.upload_count or 0) >= link.max_uploads:
            raise LinkExhaustedError(link_id=link_id)
        return LinkContext(link_id=link.link_id, client_name=link.client_name, project_name=link.project_name)

    async def get(self, link_id: str) -> UploadLink:
        link = await self.repo.get_by_token(link_id)
        if link is None:
            raise LinkNotFoundError(link_id=link_id)
        return link

    # ── admin ────────────────────────────────────────────────
    async def create(self, data: LinkCreateIn) -> UploadLink:
        expires_at = _as_utc(data.expires_at)
        if expires_at is None and data.expires_in_days:
            expires_at = datetime.now(timezone.utc) + timedelta(days=data.expires_in_days)

        link = await self.repo.create(
            link_id=secrets.token_urlsafe(LINK_TOKEN_BYTES),
            client_name=data.client_name.strip(),
            project_name=data.project_name.strip(),
            description=data.description,
            expires_at=expires_at,
            max_uploads=data.max_uploads,
            created_by=data.created_by,
        )
        await self.session.commit()
        logger.info("Upload link created (link_id=%s, client=%s)", link.link_id, link.client_name)
        return link

    async def list(self, *, active_only: bool = False, limit: int = 100, offset: int = 0) -> List[UploadLink]:
        return await self.repo.list(active_only=active_only, limit=limit, offset=offset)

    async def set_active(self, link_id: str, is_active: bool) -> UploadLink:
        if not await self.repo.set_active(link_id, is_active):
            raise LinkNotFoundError(link_id=link_id)
        await self.session.commit()
        logger.info("Upload link %s (link_id=%s)", "activated" if is_active else "deactivated", link_id)
        return await self.get(link_id)

    async def delete(self, link_id: str) -> None:
        if not await self.repo.delete(link_id):
            raise LinkNotFoundError(link_id=link_id)
        await self.session.commit()
        logger.info("Upload link deleted (link_id=%s)", link_id)

    async def record_upload(self, link_id: str) -> bool:
        """Atomically bump `upload_count` and `last_used_at`; False if the link is gone."""
        updated = await self.repo.increment_upload_count(link_id)
        await self.session.commit()
        return updated


__all__ = ["LinkRegistry", "LinkContext"]
