from __future__ import annotations

"""
ReelDrop · HTTP Utilities
=========================

Shared helpers for API routers:

- No-store JSON helper (presigned URLs and tier state must never be cached)
- Admin check (`X-Admin-Key` against `ADMIN_API_KEY`, constant-time)
- Cron check (`Authorization: Bearer <CRON_SECRET>`, constant-time)
- Worker secret extraction for webhooks (`X-Worker-Secret`)

Notes
-----
• Dependency functions return `None` on success or raise `HTTPException`.
• An unset server-side secret rejects every caller; there is no dev fallback.
"""

import hmac
from typing import Any, Mapping, Optional

from fastapi import Depends, Header, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from reeldrop.core.config import secret_value
from reeldrop.core.context import ServiceContext, get_context

__all__ = [
    "json_no_store",
    "require_admin",
    "require_cron",
    "worker_secret",
]


def _compare_ct(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


# ─────────────────────────────────────────────────────────────────────────────
# 🧊 No-store JSON
# ─────────────────────────────────────────────────────────────────────────────

def json_no_store(
    data: Any,
    status_code: int = status.HTTP_200_OK,
    *,
    response: Optional[Response] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """Return a JSONResponse with `Cache-Control: no-store`.

    Parameters
    ----------
    data : Any
        Body; passed through `jsonable_encoder` (UUIDs, datetimes, enums).
    status_code : int
        HTTP status.
    response : Response | None
        Headers such as `Location` are copied over when present.
    headers : Mapping | None
        Extra headers.
    """
    resp = JSONResponse(jsonable_encoder(data), status_code=status_code)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"

    if response is not None:
        for key in ("Location", "X-Total-Count"):
            if key in response.headers:
                resp.headers[key] = response.headers[key]
    for key, value in (headers or {}).items():
        resp.headers[key] = value
    return resp


# ─────────────────────────────────────────────────────────────────────────────
# 🛡️ Admin / cron requirements
# ─────────────────────────────────────────────────────────────────────────────

def require_admin(
    request: Request,
    ctx: ServiceContext = Depends(get_context),
) -> None:
    """Require a valid ``X-Admin-Key`` header.

    Raises
    ------
    HTTPException
        401 when the key is missing, wrong, or not configured server-side.
    """
    admin_key = secret_value(ctx.settings.ADMIN_API_KEY)
    provided = request.headers.get("x-admin-key")
    if not admin_key or not provided or not _compare_ct(provided, admin_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing admin key")


def require_cron(
    authorization: Optional[str] = Header(None),
    ctx: ServiceContext = Depends(get_context),
) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>`` for maintenance tasks."""
    expected = secret_value(ctx.settings.CRON_SECRET)
    scheme, _, token = (authorization or "").partition(" ")
    if not expected or scheme.lower() != "bearer" or not token or not _compare_ct(token.strip(), expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def worker_secret(x_worker_secret: Optional[str] = Header(None)) -> Optional[str]:
    """Raw ``X-Worker-Secret`` header; verification happens in the ingest service."""
    return x_worker_secret
