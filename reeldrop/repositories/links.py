from __future__ import annotations

"""Upload link repository (SQLAlchemy async)."""

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.db.models.upload_link import UploadLink


class UploadLinkRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_token(self, link_id: str) -> Optional[UploadLink]:
        res = await self.session.execute(
            select(UploadLink).where(UploadLink.link_id == link_id).execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def create(self, **fields: Any) -> UploadLink:
        link = UploadLink(**fields)
        self.session.add(link)
        await self.session.flush()
        return link

    async def list(self, *, active_only: bool = False, limit: int = 100, offset: int = 0) -> List[UploadLink]:
        stmt = select(UploadLink).order_by(UploadLink.created_at.desc(), UploadLink.link_id)
        if active_only:
            stmt = stmt.where(UploadLink.is_active.is_(True))
        res = await self.session.execute(stmt.limit(limit).offset(offset))
        return list(res.scalars().all())

    async def set_active(self, link_id: str, is_active: bool) -> bool:
        res = await self.session.execute(
            update(UploadLink).where(UploadLink.link_id == link_id).values(is_active=is_active)
        )
        return res.rowcount == 1

    async def delete(self, link_id: str) -> bool:
        res = await self.session.execute(delete(UploadLink).where(UploadLink.link_id == link_id))
        return res.rowcount == 1

    async def increment_upload_count(self, link_id: str) -> bool:
        """`upload_count = upload_count + 1` in one statement (no read-modify-write)."""
        res = await self.session.execute(
            update(UploadLink)
            .where(UploadLink.link_id == link_id)
            .values(
                upload_count=UploadLink.upload_count + 1,
                last_used_at=datetime.now(timezone.utc),
            )
        )
        return res.rowcount == 1
