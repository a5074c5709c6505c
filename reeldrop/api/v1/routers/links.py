"""
🔗 ReelDrop · Upload Links API (public validation + admin management)
====================================================================

Routes (5)
----------
- GET    /api/v1/links/{linkId}/validate   → Public: minimal link view for the upload page
- POST   /api/v1/admin/links               → Admin: create a link (token generated server-side)
- GET    /api/v1/admin/links               → Admin: list links (newest first)
- PUT    /api/v1/admin/links/{linkId}      → Admin: activate / deactivate (`isActive` must be a boolean)
- DELETE /api/v1/admin/links/{linkId}      → Admin: delete

Validation order for the public view matches every upload endpoint:
unknown (404) → inactive (403) → expired (403) → exhausted (403).
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from reeldrop.api.http_utils import json_no_store, require_admin
from reeldrop.core.limiter import rate_limit
from reeldrop.db.session import get_async_db
from reeldrop.schemas.links import LinkCreateIn, LinkOut, LinkUpdateIn
from reeldrop.services.link_registry import LinkRegistry

router = APIRouter(tags=["Upload Links"])
admin_router = APIRouter(prefix="/admin/links", tags=["Admin • Upload Links"], dependencies=[Depends(require_admin)])


def _registry(db: AsyncSession = Depends(get_async_db)) -> LinkRegistry:
    return LinkRegistry(db)


def _out(link) -> dict:
    return LinkOut.model_validate(link).model_dump(by_alias=True, mode="json")


# ─────────────────────────────────────────────────────────────────────────────
# 🌐 Public
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/links/{link_id}/validate", summary="Validate an upload link")
@rate_limit("60/minute")
async def validate_link(
    link_id: str,
    request: Request,
    links: LinkRegistry = Depends(_registry),
) -> JSONResponse:
    await links.validate(link_id)
    link = await links.get(link_id)
    return json_no_store(
        {
            "linkId": link.link_id,
            "clientName": link.client_name,
            "projectName": link.project_name,
            "isActive": link.is_active,
            "expiresAt": link.expires_at,
        }
    )


# ─────────────────────────────────────────────────────────────────────────────
# 🛡️ Admin
# ─────────────────────────────────────────────────────────────────────────────
@admin_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an upload link")
async def create_link(
    payload: LinkCreateIn,
    links: LinkRegistry = Depends(_registry),
) -> JSONResponse:
    link = await links.create(payload)
    return json_no_store(_out(link), status_code=status.HTTP_201_CREATED)


@admin_router.get("", summary="List upload links")
async def list_links(
    active_only: bool = Query(False, alias="activeOnly"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    links: LinkRegistry = Depends(_registry),
) -> JSONResponse:
    items: List[dict] = [_out(link) for link in await links.list(active_only=active_only, limit=limit, offset=offset)]
    return json_no_store(items, headers={"X-Total-Count": str(len(items))})


@admin_router.put("/{link_id}", summary="Activate or deactivate an upload link")
async def update_link(
    link_id: str,
    payload: LinkUpdateIn,
    links: LinkRegistry = Depends(_registry),
) -> JSONResponse:
    link = await links.set_active(link_id, payload.is_active)
    return json_no_store(_out(link))


@admin_router.delete("/{link_id}", summary="Delete an upload link")
async def delete_link(
    link_id: str,
    links: LinkRegistry = Depends(_registry),
) -> JSONResponse:
    await links.delete(link_id)
    return json_no_store({"message": "Upload link deleted successfully"})
