from __future__ import annotations

"""File, bulk-action, playback and transcode request schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from reeldrop.schemas.base import CamelModel
from reeldrop.schemas.enums import BulkAction, FileStatus


class BulkActionIn(CamelModel):
    action: BulkAction
    file_ids: List[str] = Field(..., min_length=1, max_length=500)
    status: Optional[FileStatus] = Field(None, description="Target status for `status-update`")


class PlaybackIn(CamelModel):
    file_id: str = Field(..., min_length=1)
    quality: str = Field("auto", max_length=16)
    client_width: Optional[int] = Field(None, ge=0)
    client_height: Optional[int] = Field(None, ge=0)
    connection_type: Optional[str] = Field(None, max_length=32)
    connection_speed: Optional[float] = Field(None, ge=0, description="Downlink in Mbps")


class TranscodeIn(CamelModel):
    qualities: Optional[List[str]] = Field(None, max_length=8)


class FileProxyOut(CamelModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    quality: str
    profile: Optional[str] = None
    url: Optional[str] = None
    r2_key: Optional[str] = None
    wasabi_key: Optional[str] = None


class FileOut(CamelModel):
    """Admin view of a file, including every tier sub-document."""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: UUID
    file_name: str
    file_size: int
    file_type: str
    status: FileStatus
    storage_key: Optional[str] = None
    upload_link_id: Optional[str] = None
    client_name: Optional[str] = None
    project_name: Optional[str] = None
    frameio_data: Optional[Dict[str, Any]] = None
    r2_data: Optional[Dict[str, Any]] = None
    wasabi_data: Optional[Dict[str, Any]] = None
    lucidlink_data: Optional[Dict[str, Any]] = None
    transcoding: Optional[Dict[str, Any]] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
