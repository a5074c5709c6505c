from __future__ import annotations

"""
ReelDrop • Upload request schemas
=================================

Wire format is camelCase (`linkId`, `storageKey`, `partNumbers`, ...).

Validation split
----------------
- Structural bounds (part numbers 1..10000, batch `count >= 1`) fail fast with
  **422** at the schema layer.
- Presence checks on registration and completion payloads are done by the
  coordinator and answer **400**, matching the upload client's expectations.
"""

from typing import Annotated, List, Optional

from pydantic import Field

from reeldrop.schemas.base import CamelModel
from reeldrop.services.storage import MAX_PARTS

PartNumber = Annotated[int, Field(ge=1, le=MAX_PARTS)]


class UploadInitIn(CamelModel):
    """Ask the coordinator to pick a strategy for one file."""
    link_id: str = Field(..., min_length=1, max_length=64)
    file_name: str = Field(..., min_length=1, max_length=512)
    file_type: str = Field("application/octet-stream", max_length=255)
    file_size: int = Field(..., ge=0)


class PresignedUploadIn(CamelModel):
    link_id: str = Field(..., min_length=1, max_length=64)
    file_name: str = Field(..., min_length=1, max_length=512)
    file_type: str = Field(..., min_length=1, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)


class BatchUrlsIn(CamelModel):
    link_id: str = Field(..., min_length=1, max_length=64)
    count: Optional[int] = Field(None, ge=1, description="Clamped to BATCH_URL_MAX_COUNT")


class MultipartInitIn(CamelModel):
    link_id: str = Field(..., min_length=1, max_length=64)
    file_name: str = Field(..., min_length=1, max_length=512)
    file_type: str = Field(..., min_length=1, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)


class PartUrlsIn(CamelModel):
    """Batch (`partNumbers`) or single (`partNumber`) part URL request."""
    link_id: str = Field(..., min_length=1, max_length=64)
    upload_id: str = Field(..., min_length=1)
    storage_key: str = Field(..., min_length=1, max_length=1024)
    part_numbers: Optional[List[PartNumber]] = Field(None, max_length=MAX_PARTS)
    part_number: Optional[int] = Field(None, ge=1, le=MAX_PARTS)
    content_type: Optional[str] = None

    def requested_parts(self) -> List[int]:
        if self.part_numbers is not None:
            return list(self.part_numbers)
        return [self.part_number] if self.part_number is not None else []

    @property
    def is_batch(self) -> bool:
        return self.part_numbers is not None


class CompletedPart(CamelModel):
    part_number: int = Field(..., alias="PartNumber", ge=1, le=MAX_PARTS)
    etag: str = Field(..., alias="ETag", min_length=1)


class MultipartCompleteIn(CamelModel):
    upload_id: str = Field(..., min_length=1)
    storage_key: str = Field(..., min_length=1, max_length=1024)
    parts: List[CompletedPart] = Field(default_factory=list)
    link_id: Optional[str] = Field(None, max_length=64)


class MultipartAbortIn(CamelModel):
    upload_id: str = Field(..., min_length=1)
    storage_key: str = Field(..., min_length=1, max_length=1024)
    link_id: Optional[str] = Field(None, max_length=64)


class RegisterUploadIn(CamelModel):
    """All fields optional at the schema layer; required ones are checked as 400."""
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    file_type: Optional[str] = None
    link_id: Optional[str] = None
    storage_key: Optional[str] = None
    client_name: Optional[str] = None
    project_name: Optional[str] = None
