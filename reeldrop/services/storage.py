# reeldrop/services/storage.py
from __future__ import annotations

"""
🧊 ReelDrop • Object Storage Gateway
====================================

Thin, hardened boto3 wrapper over an **S3-compatible** account. ReelDrop runs
two of them (see `ServiceContext`):

- **archive** — Wasabi; public uploads land here, originals are archived here.
- **edge**    — Cloudflare R2; transcoded proxies live here.

🎯 Goals
--------
- Presigned PUT/GET (SigV4) and presigned multipart **part** URLs
- Multipart lifecycle: create, complete, abort, list in-progress
- Server-side copy/move (placeholder resolution, archival)
- Explicit timeouts + bounded retries, path-style addressing (Wasabi/R2/MinIO)
- Defensive key normalization (no leading slash, no `..`)
- Non-blocking: every public method is `async`; boto3 calls run in a worker
  thread via `asyncio.to_thread`

Errors
------
Every provider failure is raised as `S3StorageError` carrying the provider's
message; callers translate it to an HTTP-facing error.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# 🧱 Exceptions
# ─────────────────────────────────────────────────────────────────────────────


class S3StorageError(RuntimeError):
    """Raised when a storage operation fails (network, auth, policy, etc.)."""


# ─────────────────────────────────────────────────────────────────────────────
# 🧰 Key validation
# ─────────────────────────────────────────────────────────────────────────────

_KEY_ALLOWED_RE = re.compile(r"[A-Za-z0-9._\-/+=@() ]+")
_SAFE_SEG_RE = re.compile(r"[^A-Za-z0-9._-]")

MAX_PARTS = 10_000


def normalize_key(key: str) -> str:
    """
    Normalize and validate object keys.

    Steps
    -----
    1) Coerce to str, strip whitespace
    2) Remove leading '/'
    3) Collapse '//' runs
    4) Reject path traversal ('..') and disallowed characters

    Raises
    ------
    S3StorageError
        If key is empty or contains unsafe characters.
    """
    k = str(key or "").strip().lstrip("/")
    k = re.sub(r"/{2,}", "/", k)
    if not k:
        raise S3StorageError("Invalid storage key: empty")
    if ".." in k:
        raise S3StorageError("Invalid storage key: path traversal detected")
    if not _KEY_ALLOWED_RE.fullmatch(k):
        raise S3StorageError("Invalid storage key: contains forbidden characters")
    return k


def sanitize_segment(s: Optional[str], fallback: str = "file.bin") -> str:
    """
    Sanitize a single path segment (file names inside keys).

    - Spaces collapse to underscore
    - Only letters, digits, dot, underscore, hyphen are kept
    - Leading dots are stripped (no hidden/relative names)
    - Returns `fallback` if result is empty
    """
    s = (s or "").strip()
    s = re.sub(r"\s+", "_", s)
    s = _SAFE_SEG_RE.sub("", s).lstrip(".")
    return s or fallback


def _provider_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        return f"{err.get('Code', 'Error')}: {err.get('Message', str(exc))}"
    return str(exc)


@dataclass(frozen=True)
class MultipartUploadInfo:
    """In-progress multipart upload as reported by the provider."""
    key: str
    upload_id: str
    initiated: Optional[datetime]


# ─────────────────────────────────────────────────────────────────────────────
# 📦 Gateway
# ─────────────────────────────────────────────────────────────────────────────


class ObjectStorage:
    """
    High-level S3-compatible gateway bound to one bucket.

    Parameters
    ----------
    bucket : str
        Bucket every operation targets.
    name : str
        Label used in logs and health reports (`archive`, `edge`).
    endpoint_url : str | None
        Custom endpoint (Wasabi/R2/MinIO). `None` means AWS.
    region_name : str | None
        Signing region (`auto` for R2).
    access_key_id / secret_access_key : str | None
        Explicit credentials; when absent the default AWS chain is used.
    """

    def __init__(
        self,
        bucket: str,
        *,
        name: str = "storage",
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise S3StorageError(f"{name}: bucket not configured")
        self.bucket = bucket
        self.name = name

        cfg = BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 5, "mode": "standard"},
            connect_timeout=3,
            read_timeout=10,
            s3={"addressing_style": "path"},
        )
        client_kwargs: Dict[str, Any] = {"config": cfg}
        if region_name:
            client_kwargs["region_name"] = region_name
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if access_key_id and secret_access_key:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key

        try:
            self.client = boto3.client("s3", **client_kwargs)
        except (BotoCoreError, ValueError) as e:  # pragma: no cover
            raise S3StorageError(f"Failed to create S3 client: {e}") from e

        self._repr = f"ObjectStorage(name={name}, bucket={bucket}, endpoint={'yes' if endpoint_url else 'no'})"

    # ────────────────────────────────────────────────────────────────────────
    # 🔐 Signed URLs
    # ────────────────────────────────────────────────────────────────────────

    async def presigned_put(
        self,
        key: str,
        *,
        content_type: str,
        expires_in: int,
        cache_control: Optional[str] = None,
    ) -> str:
        """
        Generate a **presigned PUT** URL for direct-to-bucket uploads.

        Parameters
        ----------
        key : str
            Object key (normalized).
        content_type : str
            MIME type the client **must** send as `Content-Type`.
        expires_in : int
            URL TTL in seconds.
        cache_control : str | None
            Stored as object `Cache-Control` metadata.
        """
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": normalize_key(key), "ContentType": content_type}
        if cache_control:
            params["CacheControl"] = cache_control
        return await self._sign("put_object", params, expires_in, http_method="PUT")

    async def presigned_get(
        self,
        key: str,
        *,
        expires_in: int,
        response_content_disposition: Optional[str] = None,
    ) -> str:
        """Generate a short-lived **presigned GET** URL."""
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": normalize_key(key)}
        if response_content_disposition:
            params["ResponseContentDisposition"] = response_content_disposition
        return await self._sign("get_object", params, expires_in)

    async def presigned_part_url(self, key: str, upload_id: str, part_number: int, *, expires_in: int) -> str:
        """Presigned PUT URL for one part of a multipart upload."""
        if not 1 <= int(part_number) <= MAX_PARTS:
            raise S3StorageError(f"Invalid part number: {part_number}")
        params = {
            "Bucket": self.bucket,
            "Key": normalize_key(key),
            "UploadId": upload_id,
            "PartNumber": int(part_number),
        }
        return await self._sign("upload_part", params, expires_in, http_method="PUT")

    # ────────────────────────────────────────────────────────────────────────
    # 🧩 Multipart lifecycle
    # ────────────────────────────────────────────────────────────────────────

    async def create_multipart_upload(
        self,
        key: str,
        *,
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> str:
        """Start a multipart upload and return its `UploadId`."""
        args: Dict[str, Any] = {"Bucket": self.bucket, "Key": normalize_key(key), "ContentType": content_type}
        if cache_control:
            args["CacheControl"] = cache_control
        resp = await self._call("create_multipart_upload", **args)
        upload_id = resp.get("UploadId")
        if not upload_id:
            raise S3StorageError("Multipart init returned no UploadId")
        return upload_id

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Complete a multipart upload.

        `parts` must already be sorted by `PartNumber`; the gateway does not
        reorder. Returns the raw provider response (`Location`, `ETag`, ...).
        """
        return await self._call(
            "complete_multipart_upload",
            Bucket=self.bucket,
            Key=normalize_key(key),
            UploadId=upload_id,
            MultipartUpload={"Parts": parts},
        )

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Abort a multipart upload; a missing upload counts as aborted."""
        try:
            await self._call("abort_multipart_upload", Bucket=self.bucket, Key=normalize_key(key), UploadId=upload_id)
        except S3StorageError as e:
            if "NoSuchUpload" in str(e):
                return
            raise

    async def list_multipart_uploads(self, prefix: str = "") -> List[MultipartUploadInfo]:
        """List in-progress multipart uploads under `prefix` (all pages)."""

        def _list() -> List[MultipartUploadInfo]:
            out: List[MultipartUploadInfo] = []
            paginator = self.client.get_paginator("list_multipart_uploads")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for up in page.get("Uploads", []) or []:
                    out.append(MultipartUploadInfo(key=up["Key"], upload_id=up["UploadId"], initiated=up.get("Initiated")))
            return out

        return await self._run("list_multipart_uploads", _list)

    # ────────────────────────────────────────────────────────────────────────
    # 🚚 Server-side object ops
    # ────────────────────────────────────────────────────────────────────────

    async def head(self, key: str) -> Optional[Dict[str, Any]]:
        """HEAD the object; `None` when it does not exist."""
        try:
            return await self._call("head_object", Bucket=self.bucket, Key=normalize_key(key))
        except S3StorageError as e:
            if any(code in str(e) for code in ("404", "NoSuchKey", "NotFound")):
                return None
            raise

    async def exists(self, key: str) -> bool:
        return await self.head(key) is not None

    async def copy(self, source_key: str, dest_key: str) -> None:
        """Server-side copy within the bucket."""
        await self._call(
            "copy_object",
            Bucket=self.bucket,
            Key=normalize_key(dest_key),
            CopySource={"Bucket": self.bucket, "Key": normalize_key(source_key)},
        )

    async def move(self, source_key: str, dest_key: str) -> None:
        """Copy then delete the source."""
        await self.copy(source_key, dest_key)
        await self.delete(source_key)

    async def delete(self, key: str) -> bool:
        """
        Best-effort delete.

        Returns True on success (including "already gone"), False on
        non-ignorable errors (logged at WARNING).
        """
        try:
            await self._call("delete_object", Bucket=self.bucket, Key=normalize_key(key))
            return True
        except S3StorageError as e:
            if "NoSuchKey" in str(e):
                return True
            logger.warning("%s delete_object failed (non-fatal): %s", self.name, e)
            return False

    async def upload_fileobj(self, key: str, fileobj: IO[bytes], *, content_type: str) -> None:
        """Stream a file-like object into the bucket (managed multipart)."""
        k = normalize_key(key)
        await self._run(
            "upload_fileobj",
            lambda: self.client.upload_fileobj(fileobj, self.bucket, k, ExtraArgs={"ContentType": content_type}),
        )

    async def check_health(self) -> Dict[str, Any]:
        """List buckets and report whether ours is visible."""
        try:
            resp = await self._call("list_buckets")
        except S3StorageError as e:
            return {"name": self.name, "ok": False, "bucket": self.bucket, "error": str(e)}
        names = [b.get("Name") for b in resp.get("Buckets", []) or []]
        return {"name": self.name, "ok": True, "bucket": self.bucket, "bucketVisible": self.bucket in names}

    # ────────────────────────────────────────────────────────────────────────
    # 🧪 Internals
    # ────────────────────────────────────────────────────────────────────────

    async def _sign(self, method: str, params: Dict[str, Any], expires_in: int, *, http_method: Optional[str] = None) -> str:
        kwargs: Dict[str, Any] = {"ClientMethod": method, "Params": params, "ExpiresIn": int(expires_in)}
        if http_method:
            kwargs["HttpMethod"] = http_method
        return await self._run(f"presign {method}", lambda: self.client.generate_presigned_url(**kwargs))

    async def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        fn = getattr(self.client, operation)
        resp = await self._run(operation, lambda: fn(**kwargs))
        return dict(resp or {})

    async def _run(self, operation: str, fn) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except (ClientError, BotoCoreError) as e:
            message = _provider_message(e)
            logger.warning("%s %s failed: %s", self.name, operation, message)
            raise S3StorageError(message) from e

    def __repr__(self) -> str:  # pragma: no cover
        return self._repr


__all__ = [
    "ObjectStorage",
    "S3StorageError",
    "MultipartUploadInfo",
    "normalize_key",
    "sanitize_segment",
    "MAX_PARTS",
]
