# tests/fixtures/mocks/storage.py
from __future__ import annotations

"""
FakeStorage (async) — stands in for `reeldrop.services.storage.ObjectStorage`
=============================================================================
In-memory objects + multipart sessions, with every call recorded in `calls`
so tests can assert on ordering (e.g. "no presign after a link rejection").

Failure injection
-----------------
    storage.fail_on["complete_multipart_upload"] = "InternalError"
    storage.fail_part_numbers = {3}           # presigned_part_url fails for part 3
"""

import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from reeldrop.services.storage import MultipartUploadInfo, S3StorageError


class FakeStorage:
    def __init__(self, bucket: str = "test-bucket", name: str = "archive") -> None:
        self.bucket = bucket
        self.name = name
        self.objects: Dict[str, bytes] = {}
        self.multipart: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, tuple, dict]] = []
        self.fail_on: Dict[str, str] = {}
        self.fail_part_numbers: Set[int] = set()
        self.complete_response: Optional[Dict[str, Any]] = None
        self._ids = itertools.count(1)

    # ── helpers ──────────────────────────────────────────────
    def _record(self, op: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((op, args, kwargs))
        if op in self.fail_on:
            raise S3StorageError(self.fail_on[op])

    def ops(self) -> List[str]:
        return [c[0] for c in self.calls]

    def presign_calls(self) -> List[str]:
        return [op for op in self.ops() if op.startswith("presigned_") or op == "create_multipart_upload"]

    def add_multipart(self, key: str, upload_id: str, initiated: datetime) -> None:
        self.multipart[upload_id] = {"key": key, "initiated": initiated, "contentType": None}

    # ── presign ──────────────────────────────────────────────
    async def presigned_put(self, key: str, *, content_type: str, expires_in: int, cache_control: Optional[str] = None) -> str:
        self._record("presigned_put", key, content_type=content_type, expires_in=expires_in)
        return f"https://{self.bucket}.s3.test/{key}?X-Amz-Expires={expires_in}&method=PUT"

    async def presigned_get(self, key: str, *, expires_in: int, response_content_disposition: Optional[str] = None) -> str:
        self._record("presigned_get", key, expires_in=expires_in)
        return f"https://{self.bucket}.s3.test/{key}?X-Amz-Expires={expires_in}&method=GET"

    async def presigned_part_url(self, key: str, upload_id: str, part_number: int, *, expires_in: int) -> str:
        self._record("presigned_part_url", key, upload_id, part_number, expires_in=expires_in)
        if part_number in self.fail_part_numbers:
            raise S3StorageError(f"cannot sign part {part_number}")
        return f"https://{self.bucket}.s3.test/{key}?uploadId={upload_id}&partNumber={part_number}"

    # ── multipart ────────────────────────────────────────────
    async def create_multipart_upload(self, key: str, *, content_type: str, cache_control: Optional[str] = None) -> str:
        self._record("create_multipart_upload", key, content_type=content_type, cache_control=cache_control)
        upload_id = f"upload-{next(self._ids)}"
        self.multipart[upload_id] = {
            "key": key,
            "initiated": datetime.now(timezone.utc),
            "contentType": content_type,
            "cacheControl": cache_control,
        }
        return upload_id

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Dict[str, Any]:
        self._record("complete_multipart_upload", key, upload_id, parts=parts)
        self.multipart.pop(upload_id, None)
        self.objects[key] = b"assembled"
        if self.complete_response is not None:
            return self.complete_response
        return {"Location": f"https://{self.bucket}.s3.test/{key}", "ETag": '"final-etag"'}

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._record("abort_multipart_upload", key, upload_id)
        self.multipart.pop(upload_id, None)

    async def list_multipart_uploads(self, prefix: str = "") -> List[MultipartUploadInfo]:
        self._record("list_multipart_uploads", prefix=prefix)
        return [
            MultipartUploadInfo(key=m["key"], upload_id=uid, initiated=m["initiated"])
            for uid, m in self.multipart.items()
            if m["key"].startswith(prefix)
        ]

    # ── objects ──────────────────────────────────────────────
    async def head(self, key: str) -> Optional[Dict[str, Any]]:
        self._record("head", key)
        if key not in self.objects:
            return None
        return {"ContentLength": len(self.objects[key])}

    async def exists(self, key: str) -> bool:
        return await self.head(key) is not None

    async def copy(self, source_key: str, dest_key: str) -> None:
        self._record("copy", source_key, dest_key)
        if source_key not in self.objects:
            raise S3StorageError("NoSuchKey: The specified key does not exist.")
        self.objects[dest_key] = self.objects[source_key]

    async def move(self, source_key: str, dest_key: str) -> None:
        await self.copy(source_key, dest_key)
        await self.delete(source_key)

    async def delete(self, key: str) -> bool:
        self._record("delete", key)
        return self.objects.pop(key, None) is not None

    async def upload_fileobj(self, key: str, fileobj, *, content_type: str) -> None:
        self._record("upload_fileobj", key, content_type=content_type)
        self.objects[key] = fileobj.read()

    async def check_health(self) -> Dict[str, Any]:
        if "check_health" in self.fail_on:
            return {"name": self.name, "ok": False, "bucket": self.bucket, "error": self.fail_on["check_health"]}
        return {"name": self.name, "ok": True, "bucket": self.bucket, "bucketVisible": True}
