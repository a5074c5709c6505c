from __future__ import annotations

"""
Central enum definitions used across ReelDrop.

Design notes
------------
• All enums subclass `str, PyEnum` for JSON-friendly serialization.
• VALUE STRINGS are **stable** once deployed (stored in the DB and in tier JSON).
"""

from enum import Enum as PyEnum


# ──────────────────────────────────────────────────────────────
# Files
# ──────────────────────────────────────────────────────────────
class FileStatus(str, PyEnum):
    """Lifecycle of a file record (see `file_reconciler` for transitions)."""
    UPLOADING = "uploading"
    PROCESSING = "processing"
    PROCESSED = "processed"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


class TierStatus(str, PyEnum):
    """Per-tier status carried inside each tier sub-document."""
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class StorageTier(str, PyEnum):
    """Sub-documents of a file that are reconciled independently."""
    FRAMEIO = "frameio"
    R2 = "r2"
    WASABI = "wasabi"
    LUCIDLINK = "lucidlink"
    TRANSCODING = "transcoding"


class TranscodeStatus(str, PyEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ──────────────────────────────────────────────────────────────
# Uploads
# ──────────────────────────────────────────────────────────────
class UploadStrategy(str, PyEnum):
    """Upload path chosen by the coordinator from the declared size."""
    DIRECT = "direct"
    MULTIPART = "multipart"


class BulkAction(str, PyEnum):
    DELETE = "delete"
    DOWNLOAD = "download"
    STATUS_UPDATE = "status-update"


__all__ = [
    "FileStatus",
    "TierStatus",
    "StorageTier",
    "TranscodeStatus",
    "UploadStrategy",
    "BulkAction",
]
