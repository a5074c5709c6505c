from __future__ import annotations

"""
📼 ReelDrop — FileProxy (transcoded rendition)
==============================================

A playable proxy of a `File` at one ladder quality (e.g. `720p`).

Idempotency
-----------
`(file_id, quality)` is unique: completion webhooks that are replayed (or that
report the same quality from two providers) update the existing row instead
of adding a duplicate. `position` keeps the order in which qualities were
first reported; the playback resolver breaks ties by that order.
"""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import relationship

from reeldrop.db.base_class import Base, TimestampMixin, UUIDPKMixin


class FileProxy(UUIDPKMixin, TimestampMixin, Base):
    """Rendition of a file at a ladder quality."""

    __tablename__ = "file_proxies"

    file_id = Column(Uuid, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    quality = Column(String(16), nullable=False, doc="Ladder label, e.g. '1080p'.")
    profile = Column(String(64), nullable=True, doc="Provider profile name, e.g. 'h264_1080p'.")
    url = Column(String(2048), nullable=True, doc="Playable URL (edge/CDN).")
    r2_key = Column(String(1024), nullable=True)
    wasabi_key = Column(String(1024), nullable=True)
    position = Column(Integer, nullable=False, default=0, server_default=text("0"))

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("file_id", "quality", name="uq_file_proxies_file_quality"),
    )

    file = relationship("File", back_populates="proxies")
