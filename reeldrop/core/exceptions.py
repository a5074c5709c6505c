# reeldrop/core/exceptions.py
from __future__ import annotations

"""
ReelDrop — Application Exceptions
=================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException` that
lets us attach structured metadata and integrate cleanly with the problem+json
shape rendered by `reeldrop.core.exception_handlers`.

Key ideas
---------
- One base `AppException` that carries `code`, `request_id`, `details`, `extra`.
- Domain exceptions inherit from it and set sane defaults (status + message).
- Services raise these directly; routes never translate them.

Usage
-----
    raise LinkExpiredError(link_id="abc123")
    raise AppException(status_code=409, message="Already running", details={"jobId": "j-1"})
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

__all__ = [
    "AppException",
    "LinkNotFoundError",
    "LinkInactiveError",
    "LinkExpiredError",
    "LinkExhaustedError",
    "FileRecordNotFoundError",
    "InvalidIdentifierError",
    "BadRequestError",
    "StorageError",
    "UpstreamServiceError",
    "ConcurrencyConflictError",
    "TranscodeConflictError",
    "TranscodeFailedError",
    "WebhookAuthError",
]


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code (e.g., 400/401/403/404/409/422/500).
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : int
        Optional internal/typed error code. Defaults to `status_code`.
    request_id : str | None
        Optional request correlation id.
    details : dict | list | str | None
        Machine-readable details (ids, constraints, upstream payloads).
    extra : dict | None
        Additional non-sensitive metadata to surface to clients.
    headers : dict | None
        Optional headers (e.g., `{"WWW-Authenticate": "Bearer"}`).
    """

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: int = int(code or status_code)
        self.message: str = message
        self.request_id: Optional[str] = request_id
        self.details: Optional[Any] = details
        self.extra: Dict[str, Any] = extra or {}

    def to_problem(self, *, fallback_request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return the extension members merged into the problem+json body."""
        body: Dict[str, Any] = {
            "code": self.code,
            "request_id": self.request_id or fallback_request_id or "N/A",
        }
        if self.details is not None:
            body["details"] = self.details
        extra_sanitized = dict(self.extra) if self.extra else {}
        for k in ("token", "authorization", "password", "secret"):
            extra_sanitized.pop(k, None)
        body.update(extra_sanitized)
        return body


# ──────────────────────────────────────────────────────────────
# 🔗 Upload links
# ──────────────────────────────────────────────────────────────
class LinkNotFoundError(AppException):
    def __init__(self, *, link_id: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="Invalid upload link",
            details={"linkId": link_id} if link_id else None,
        )


class LinkInactiveError(AppException):
    def __init__(self, *, link_id: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            message="Upload link is inactive",
            details={"linkId": link_id} if link_id else None,
        )


class LinkExpiredError(AppException):
    def __init__(self, *, link_id: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            message="Upload link has expired",
            details={"linkId": link_id} if link_id else None,
        )


class LinkExhaustedError(AppException):
    """Raised when a link with `max_uploads` has no uploads left."""

    def __init__(self, *, link_id: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            message="Upload link has reached its upload limit",
            details={"linkId": link_id} if link_id else None,
        )


# ──────────────────────────────────────────────────────────────
# 🗂️ Files & input
# ──────────────────────────────────────────────────────────────
class FileRecordNotFoundError(AppException):
    def __init__(self, *, file_id: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="File not found",
            details={"fileId": file_id} if file_id else None,
        )


class InvalidIdentifierError(AppException):
    def __init__(self, *, value: Any, kind: str = "file id") -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=f"Invalid {kind}",
            details={"value": str(value)},
        )


class BadRequestError(AppException):
    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, message=message, details=details)


# ──────────────────────────────────────────────────────────────
# ☁️ Upstream providers
# ──────────────────────────────────────────────────────────────
class StorageError(AppException):
    """Object storage failure; surfaced as 500 with the provider's message."""

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message=message,
            details=details,
        )


class UpstreamServiceError(AppException):
    """Non-storage third-party failure (transcoding worker, LucidLink bridge)."""

    def __init__(self, service: str, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message=f"{service}: {message}",
            details=details,
        )
        self.service = service


# ──────────────────────────────────────────────────────────────
# 🔁 Concurrency & processing
# ──────────────────────────────────────────────────────────────
class ConcurrencyConflictError(AppException):
    def __init__(self, *, file_id: str, attempts: int) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            message="Concurrent update conflict; retry the request",
            details={"fileId": file_id, "attempts": attempts},
        )


class TranscodeConflictError(AppException):
    def __init__(self, *, file_id: str, job_id: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            message="A transcoding job is already in progress for this file",
            details={"fileId": file_id, "jobId": job_id},
        )


class TranscodeFailedError(AppException):
    def __init__(self, *, file_id: str, error: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Video processing failed",
            details={"fileId": file_id, "error": error},
        )


# ──────────────────────────────────────────────────────────────
# 🔑 Shared-secret auth
# ──────────────────────────────────────────────────────────────
class WebhookAuthError(AppException):
    """Raised for a missing/incorrect shared secret (401)."""

    def __init__(self, *, detail: str = "Unauthorized") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, message=detail)
