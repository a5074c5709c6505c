from __future__ import annotations

"""
🎞️ ReelDrop — File (canonical per-upload record)
================================================

One row per uploaded (or platform-registered) file. Besides the upload status,
each downstream storage tier keeps its **own** sub-document, updated only by
the handler for that tier:

    frameio_data    {assetId, projectId, proxyStatus, proxies[]}
    r2_data         {keys[], status, lastAccessed, expiresAt}
    wasabi_data     {originalKey, proxyKeys[], status, archivedAt}
    lucidlink_data  {path, status, copiedAt}
    transcoding     {jobId, status, qualities[], startedAt, completedAt?, error?}

Concurrency
-----------
Tier callbacks arrive from independent services in any order. Every write to a
sub-document is a compare-and-swap on `version` (see
`reeldrop.repositories.files.FileRepository.cas_update`), so two handlers
touching different tiers never lose each other's changes.

Relationships
-------------
• `File.proxies`  ↔  `FileProxy.file` (unique per quality)
"""

from sqlalchemy import BigInteger, CheckConstraint, Column, Enum as SAEnum, Index, Integer, String, text
from sqlalchemy.orm import relationship

from reeldrop.db.base_class import Base, JSONDocument, TimestampMixin, UUIDPKMixin
from reeldrop.schemas.enums import FileStatus

TIER_COLUMNS = {
    "frameio": "frameio_data",
    "r2": "r2_data",
    "wasabi": "wasabi_data",
    "lucidlink": "lucidlink_data",
    "transcoding": "transcoding",
}


class File(UUIDPKMixin, TimestampMixin, Base):
    """Uploaded file and its per-tier reconciliation state."""

    __tablename__ = "files"

    # ── Identity / upload facts ──────────────────────────────
    file_name = Column(String(512), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0, server_default=text("0"))
    file_type = Column(String(255), nullable=False, default="application/octet-stream")
    storage_key = Column(String(1024), nullable=True, index=True, doc="Object key in the archive bucket.")
    upload_link_id = Column(String(64), nullable=True, index=True, doc="Public token of the originating link.")

    client_name = Column(String(255), nullable=True, index=True)
    project_name = Column(String(255), nullable=True, index=True)

    status = Column(
        SAEnum(
            FileStatus,
            name="file_status",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=FileStatus.UPLOADING,
        index=True,
    )

    # ── Tier sub-documents ───────────────────────────────────
    frameio_data = Column(JSONDocument, nullable=True)
    r2_data = Column(JSONDocument, nullable=True)
    wasabi_data = Column(JSONDocument, nullable=True)
    lucidlink_data = Column(JSONDocument, nullable=True)
    transcoding = Column(JSONDocument, nullable=True)

    # Frame.io asset id, denormalized for lookups/idempotency.
    frameio_asset_id = Column(String(128), nullable=True, unique=True)

    version = Column(Integer, nullable=False, default=1, server_default=text("1"))

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        CheckConstraint("file_size >= 0", name="file_size_nonneg"),
        CheckConstraint("version >= 1", name="version_pos"),
        Index("ix_files_status_created", "status", "created_at"),
    )

    proxies = relationship(
        "FileProxy",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FileProxy.position",
        lazy="selectin",
    )

    @property
    def is_video(self) -> bool:
        return (self.file_type or "").lower().startswith("video/")
