from __future__ import annotations

"""
File record repository.

Every write that touches a tier sub-document or the status goes through a
*conditional* UPDATE so that concurrent handlers never silently overwrite each
other:

- `cas_update`         → `... WHERE id = :id AND version = :seen`
- `transition_status`  → `... WHERE id = :id AND status = :current`

Both bump `version`; a caller that loses the race re-reads and retries.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.db.models.file import File
from reeldrop.db.models.file_proxy import FileProxy
from reeldrop.schemas.enums import FileStatus


class FileRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ── reads ────────────────────────────────────────────────
    async def get(self, file_id: uuid.UUID) -> Optional[File]:
        """Fresh read (bypasses identity-map staleness after core UPDATEs)."""
        res = await self.session.execute(
            select(File).where(File.id == file_id).execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def find_by_asset_id(self, asset_id: str) -> Optional[File]:
        res = await self.session.execute(
            select(File).where(File.frameio_asset_id == asset_id).execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def list_proxies(self, file_id: uuid.UUID) -> List[FileProxy]:
        res = await self.session.execute(
            select(FileProxy)
            .where(FileProxy.file_id == file_id)
            .order_by(FileProxy.position, FileProxy.created_at)
            .execution_options(populate_existing=True)
        )
        return list(res.scalars().all())

    async def get_proxy(self, file_id: uuid.UUID, quality: str) -> Optional[FileProxy]:
        res = await self.session.execute(
            select(FileProxy).where(FileProxy.file_id == file_id, FileProxy.quality == quality)
        )
        return res.scalar_one_or_none()

    async def archive_candidates(self, *, created_before: datetime) -> List[File]:
        """`completed` files with an archive-bucket original, oldest first.

        Tier status is filtered by the caller (JSON paths differ per dialect).
        """
        res = await self.session.execute(
            select(File)
            .where(
                File.status == FileStatus.COMPLETED,
                File.storage_key.is_not(None),
                File.created_at < created_before,
            )
            .order_by(File.created_at)
        )
        return list(res.scalars().all())

    # ── writes ───────────────────────────────────────────────
    async def create(self, **fields: Any) -> File:
        record = File(**fields)
        self.session.add(record)
        await self.session.flush()
        return record

    async def cas_update(self, file_id: uuid.UUID, seen_version: int, values: Dict[str, Any]) -> bool:
        """Apply `values` only if the row still has `seen_version`."""
        res = await self.session.execute(
            update(File)
            .where(File.id == file_id, File.version == seen_version)
            .values(**values, version=File.version + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def transition_status(self, file_id: uuid.UUID, current: FileStatus, target: FileStatus) -> bool:
        res = await self.session.execute(
            update(File)
            .where(File.id == file_id, File.status == current)
            .values(status=target, version=File.version + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def delete(self, file_id: uuid.UUID) -> bool:
        await self.session.execute(delete(FileProxy).where(FileProxy.file_id == file_id))
        res = await self.session.execute(delete(File).where(File.id == file_id))
        return res.rowcount == 1

    async def insert_proxy(self, file_id: uuid.UUID, quality: str, fields: Dict[str, Any]) -> FileProxy:
        """Insert a proxy at the next position; raises IntegrityError on a duplicate quality."""
        res = await self.session.execute(
            select(func.count()).select_from(FileProxy).where(FileProxy.file_id == file_id)
        )
        proxy = FileProxy(file_id=file_id, quality=quality, position=int(res.scalar_one()), **fields)
        self.session.add(proxy)
        await self.session.flush()
        return proxy

    async def update_proxy(self, file_id: uuid.UUID, quality: str, fields: Dict[str, Any]) -> bool:
        if not fields:
            return True
        res = await self.session.execute(
            update(FileProxy)
            .where(FileProxy.file_id == file_id, FileProxy.quality == quality)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1
