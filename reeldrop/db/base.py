# reeldrop/db/base.py
"""
ReelDrop — SQLAlchemy Base registry
===================================

Import all ORM models so their tables are registered on `Base.metadata`.
Used by Alembic autogeneration and by test fixtures calling `create_all`.

Keep this file import-only; no runtime logic.
"""

from reeldrop.db.base_class import Base
from reeldrop.db.models.upload_link import UploadLink
from reeldrop.db.models.file import File
from reeldrop.db.models.file_proxy import FileProxy

__all__ = ["Base", "UploadLink", "File", "FileProxy"]
