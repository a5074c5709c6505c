from __future__ import annotations

"""Upload link request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel

from reeldrop.schemas.base import CamelModel


class LinkCreateIn(CamelModel):
    client_name: str = Field(..., min_length=1, max_length=255)
    project_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    expires_at: Optional[datetime] = Field(None, description="Absolute expiry (UTC if naive)")
    expires_in_days: Optional[int] = Field(None, ge=1, le=3650, description="Relative expiry; ignored if expiresAt is set")
    max_uploads: Optional[int] = Field(None, ge=1)
    created_by: Optional[str] = Field(None, max_length=255)


class LinkUpdateIn(CamelModel):
    """Only activation is mutable; non-boolean values are rejected (422)."""
    is_active: StrictBool


class LinkOut(CamelModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    link_id: str
    client_name: str
    project_name: str
    description: Optional[str] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    max_uploads: Optional[int] = None
    upload_count: int = 0
    last_used_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
