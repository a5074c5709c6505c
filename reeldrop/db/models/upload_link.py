from __future__ import annotations

"""
🔗 ReelDrop — UploadLink (public upload token)
==============================================

A link is the **only** authorization gate of the public upload surface: a
client holding `link_id` may upload files attributed to the link's client and
project while the link is active, not expired and (optionally) under its
`max_uploads` budget.

Design highlights
-----------------
• `link_id` is an opaque URL-safe token (unique) distinct from the UUID pk
• Counters (`upload_count`, `last_used_at`) are bumped atomically in SQL
• Deactivation is the normal way to retire a link; hard delete is supported
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text, text

from reeldrop.db.base_class import Base, TimestampMixin, UUIDPKMixin


class UploadLink(UUIDPKMixin, TimestampMixin, Base):
    """Public upload link bound to a client/project."""

    __tablename__ = "upload_links"

    link_id = Column(String(64), nullable=False, unique=True, index=True, doc="Public token used in upload URLs.")
    client_name = Column(String(255), nullable=False)
    project_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    expires_at = Column(DateTime(timezone=True), nullable=True, doc="NULL means the link never expires.")
    max_uploads = Column(Integer, nullable=True, doc="Optional cap on registered uploads.")

    upload_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(255), nullable=True)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        CheckConstraint("upload_count >= 0", name="upload_count_nonneg"),
        CheckConstraint("(max_uploads IS NULL) OR (max_uploads > 0)", name="max_uploads_pos"),
    )
