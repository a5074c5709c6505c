# tests/test_uploads.py
from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from reeldrop.core.config import MIB
from reeldrop.db.models.file import File
from reeldrop.schemas.enums import FileStatus, UploadStrategy
from reeldrop.services.link_registry import LinkRegistry
from reeldrop.services.storage import MAX_PARTS
from reeldrop.services.upload_coordinator import plan_upload, resolve_placeholder_key
from tests.fixtures.app import API
from tests.fixtures.factories import create_link

LINK = "link-abc123"


@pytest.fixture()
async def link(db_session):
    return await create_link(db_session, link_id=LINK)


def _calls(storage, op):
    return [c for c in storage.calls if c[0] == op]


# ─────────────────────────────────────────────────────────────
# Planning (pure)
# ─────────────────────────────────────────────────────────────

def test_plan_below_threshold_is_direct():
    plan = plan_upload(99 * MIB, threshold=100 * MIB, part_size=10 * MIB)
    assert plan.strategy == UploadStrategy.DIRECT
    assert plan.to_dict() == {"strategy": "direct", "fileSize": 99 * MIB}


def test_plan_at_threshold_is_multipart():
    plan = plan_upload(100 * MIB, threshold=100 * MIB, part_size=10 * MIB)
    assert plan.strategy == UploadStrategy.MULTIPART
    assert plan.part_size == 10 * MIB
    assert plan.part_count == 10


def test_plan_never_uses_parts_below_five_mib():
    plan = plan_upload(200 * MIB, threshold=100 * MIB, part_size=1 * MIB)
    assert plan.part_size == 5 * MIB
    assert plan.part_count == 40


def test_plan_grows_parts_to_stay_within_part_limit():
    size = 200 * 1024 * MIB
    plan = plan_upload(size, threshold=100 * MIB, part_size=10 * MIB)
    assert plan.part_count <= MAX_PARTS
    assert plan.part_size % MIB == 0
    assert plan.part_size * plan.part_count >= size


@pytest.mark.parametrize(
    "key, name, expected",
    [
        ("uploads/L/abc_placeholder", "My Clip.mov", "uploads/L/abc/My_Clip.mov"),
        ("uploads/L/abc_placeholder_take2.mov", "ignored.mov", "uploads/L/abc/take2.mov"),
        ("uploads/L/final.mov", "final.mov", "uploads/L/final.mov"),
    ],
)
def test_resolve_placeholder_key(key, name, expected):
    assert resolve_placeholder_key(key, name) == expected


# ─────────────────────────────────────────────────────────────
# Link gate: rejected links never get a signature
# ─────────────────────────────────────────────────────────────

INITIATING = [
    ("/upload/init", {"fileName": "a.mov", "fileType": "video/quicktime", "fileSize": 10}),
    ("/upload/presigned", {"fileName": "a.mov", "fileType": "video/quicktime"}),
    ("/upload/batch-urls", {"count": 3}),
    ("/upload/multipart/initialize", {"fileName": "a.mov", "fileType": "video/quicktime"}),
    ("/upload/multipart/chunk", {"uploadId": "u-1", "storageKey": f"uploads/{LINK}/a.mov", "partNumbers": [1, 2]}),
]


@pytest.mark.anyio
@pytest.mark.parametrize("path, body", INITIATING)
@pytest.mark.parametrize(
    "link_kwargs, expected_status",
    [
        (None, 404),
        (dict(is_active=False), 403),
        (dict(expired=True), 403),
        (dict(max_uploads=1, upload_count=1), 403),
    ],
)
async def test_rejected_link_gets_no_storage_call(
    async_client: AsyncClient, db_session, archive_storage, path, body, link_kwargs, expected_status
):
    if link_kwargs is not None:
        await create_link(db_session, link_id=LINK, **link_kwargs)

    r = await async_client.post(f"{API}{path}", json={"linkId": LINK, **body})

    assert r.status_code == expected_status, r.text
    assert archive_storage.presign_calls() == []


# ─────────────────────────────────────────────────────────────
# Direct, auto and batch
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_presigned_direct_key_and_context(async_client: AsyncClient, link, archive_storage):
    r = await async_client.post(
        f"{API}/upload/presigned",
        json={"linkId": LINK, "fileName": "Final Cut v2.mov", "fileType": "video/quicktime"},
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["storageKey"] == f"uploads/{LINK}/Final_Cut_v2.mov"
    assert body["uploadUrl"].startswith("https://reeldrop-uploads.s3.test/")
    assert body["clientName"] == "Acme Films"
    assert body["projectName"] == "Spring Campaign"
    (_, _, kwargs), = _calls(archive_storage, "presigned_put")
    assert kwargs["content_type"] == "video/quicktime"


@pytest.mark.anyio
async def test_init_small_file_goes_direct(async_client: AsyncClient, link, archive_storage):
    r = await async_client.post(
        f"{API}/upload/init",
        json={"linkId": LINK, "fileName": "still.jpg", "fileType": "image/jpeg", "fileSize": 2 * MIB},
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["strategy"] == "direct"
    assert body["uploadUrl"]
    assert "uploadId" not in body
    assert archive_storage.ops() == ["presigned_put"]


@pytest.mark.anyio
async def test_init_large_file_goes_multipart(async_client: AsyncClient, link, archive_storage):
    r = await async_client.post(
        f"{API}/upload/init",
        json={"linkId": LINK, "fileName": "raw.mxf", "fileType": "application/mxf", "fileSize": 500 * MIB},
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["strategy"] == "multipart"
    assert body["partSize"] == 10 * MIB
    assert body["partCount"] == 50
    assert body["uploadId"] == "upload-1"
    assert body["storageKey"].startswith(f"uploads/{LINK}/")
    assert body["storageKey"].endswith("_raw.mxf")


@pytest.mark.anyio
async def test_batch_urls_default_and_clamp(async_client: AsyncClient, link):
    r = await async_client.post(f"{API}/upload/batch-urls", json={"linkId": LINK})
    assert r.status_code == 200
    assert len(r.json()["urls"]) == 5

    r = await async_client.post(f"{API}/upload/batch-urls", json={"linkId": LINK, "count": 50})
    assert r.status_code == 200
    urls = r.json()["urls"]
    assert len(urls) == 20
    assert all(u["storageKey"].startswith(f"uploads/{LINK}/") for u in urls)
    assert all(u["storageKey"].endswith("_placeholder") for u in urls)
    assert len({u["id"] for u in urls}) == 20


@pytest.mark.anyio
async def test_batch_urls_rejects_zero_count(async_client: AsyncClient, link, archive_storage):
    r = await async_client.post(f"{API}/upload/batch-urls", json={"linkId": LINK, "count": 0})
    assert r.status_code == 422
    assert archive_storage.calls == []


# ─────────────────────────────────────────────────────────────
# Multipart parts
# ─────────────────────────────────────────────────────────────

def _chunk_body(**extra):
    return {"linkId": LINK, "uploadId": "upload-9", "storageKey": f"uploads/{LINK}/1700000000000_raw.mxf", **extra}


@pytest.mark.anyio
async def test_single_part_url(async_client: AsyncClient, link):
    r = await async_client.post(f"{API}/upload/multipart/chunk", json=_chunk_body(partNumber=2))

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["partNumber"] == 2
    assert "partNumber=2" in body["presignedUrl"]


@pytest.mark.anyio
async def test_batch_part_urls(async_client: AsyncClient, link):
    r = await async_client.post(f"{API}/upload/multipart/chunk", json=_chunk_body(partNumbers=[3, 1, 2]))

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert [p["partNumber"] for p in body["presignedUrls"]] == [3, 1, 2]
    assert body["uploadId"] == "upload-9"


@pytest.mark.anyio
async def test_part_urls_for_foreign_key_are_forbidden(async_client: AsyncClient, link, archive_storage):
    body = _chunk_body(partNumbers=[1], storageKey="uploads/someone-else/raw.mxf")

    r = await async_client.post(f"{API}/upload/multipart/chunk", json=body)

    assert r.status_code == 403
    assert archive_storage.presign_calls() == []


@pytest.mark.anyio
@pytest.mark.parametrize("extra", [{"partNumbers": [0]}, {"partNumbers": [1, 10001]}, {"partNumber": 10001}])
async def test_part_numbers_out_of_range(async_client: AsyncClient, link, extra):
    r = await async_client.post(f"{API}/upload/multipart/chunk", json=_chunk_body(**extra))
    assert r.status_code == 422


@pytest.mark.anyio
async def test_part_urls_require_a_part_number(async_client: AsyncClient, link):
    r = await async_client.post(f"{API}/upload/multipart/chunk", json=_chunk_body())
    assert r.status_code == 400


@pytest.mark.anyio
async def test_part_url_batch_is_all_or_nothing(async_client: AsyncClient, link, archive_storage):
    archive_storage.fail_part_numbers = {2}

    r = await async_client.post(f"{API}/upload/multipart/chunk", json=_chunk_body(partNumbers=[1, 2, 3]))

    assert r.status_code == 500
    body = r.json()
    assert "presignedUrls" not in body
    assert body["detail"].startswith("Failed to generate part URLs")


# ─────────────────────────────────────────────────────────────
# Multipart completion and abort
# ─────────────────────────────────────────────────────────────

def _complete_body(parts, **extra):
    return {"uploadId": "upload-9", "storageKey": f"uploads/{LINK}/1700000000000_raw.mxf", "parts": parts, **extra}


@pytest.mark.anyio
async def test_complete_sorts_and_dedupes_parts(async_client: AsyncClient, link, archive_storage):
    parts = [
        {"PartNumber": 2, "ETag": '"b"'},
        {"PartNumber": 1, "ETag": '"a"'},
        {"PartNumber": 2, "ETag": '"b-retry"'},
    ]

    r = await async_client.post(f"{API}/upload/multipart/complete", json=_complete_body(parts, linkId=LINK))

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["location"].endswith("1700000000000_raw.mxf")
    (_, _, kwargs), = _calls(archive_storage, "complete_multipart_upload")
    assert kwargs["parts"] == [{"PartNumber": 1, "ETag": '"a"'}, {"PartNumber": 2, "ETag": '"b-retry"'}]


@pytest.mark.anyio
async def test_complete_failure_aborts_upload(async_client: AsyncClient, archive_storage):
    archive_storage.fail_on["complete_multipart_upload"] = "InternalError: We encountered an internal error."

    r = await async_client.post(
        f"{API}/upload/multipart/complete", json=_complete_body([{"PartNumber": 1, "ETag": '"a"'}])
    )

    assert r.status_code == 500
    assert "InternalError" in r.json()["detail"]
    assert archive_storage.ops() == ["complete_multipart_upload", "abort_multipart_upload"]


@pytest.mark.anyio
async def test_complete_without_location_aborts_upload(async_client: AsyncClient, archive_storage):
    archive_storage.complete_response = {"ETag": '"x"'}

    r = await async_client.post(
        f"{API}/upload/multipart/complete", json=_complete_body([{"PartNumber": 1, "ETag": '"a"'}])
    )

    assert r.status_code == 500
    assert "abort_multipart_upload" in archive_storage.ops()


@pytest.mark.anyio
async def test_complete_with_no_parts_is_400(async_client: AsyncClient, archive_storage):
    r = await async_client.post(f"{API}/upload/multipart/complete", json=_complete_body([]))

    assert r.status_code == 400
    assert archive_storage.calls == []


@pytest.mark.anyio
async def test_complete_checks_key_ownership_when_link_given(async_client: AsyncClient, link, archive_storage):
    body = _complete_body([{"PartNumber": 1, "ETag": '"a"'}], linkId=LINK, storageKey="uploads/other/raw.mxf")

    r = await async_client.post(f"{API}/upload/multipart/complete", json=body)

    assert r.status_code == 403
    assert archive_storage.calls == []


@pytest.mark.anyio
async def test_abort(async_client: AsyncClient, archive_storage):
    archive_storage.add_multipart(f"uploads/{LINK}/x.mxf", "upload-9", initiated=None)

    r = await async_client.post(
        f"{API}/upload/multipart/abort", json={"uploadId": "upload-9", "storageKey": f"uploads/{LINK}/x.mxf"}
    )

    assert r.status_code == 200
    assert r.json() == {"success": True, "uploadId": "upload-9", "storageKey": f"uploads/{LINK}/x.mxf"}
    assert archive_storage.multipart == {}


# ─────────────────────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_register_moves_placeholder_and_counts_upload(
    async_client: AsyncClient, link, db_session, archive_storage, notifier
):
    placeholder = f"uploads/{LINK}/Xy12ab34Cd_placeholder"
    archive_storage.objects[placeholder] = b"bytes"

    r = await async_client.post(
        f"{API}/upload/register",
        json={
            "fileName": "My Clip.mov",
            "fileSize": 5,
            "fileType": "video/quicktime",
            "linkId": LINK,
            "storageKey": placeholder,
        },
    )

    assert r.status_code == 200, r.text
    body = r.json()
    final_key = f"uploads/{LINK}/Xy12ab34Cd/My_Clip.mov"
    assert body["message"] == "File registered successfully"
    assert body["storageKey"] == final_key
    assert final_key in archive_storage.objects
    assert placeholder not in archive_storage.objects

    record = (await db_session.execute(select(File))).scalar_one()
    assert str(record.id) == body["fileId"]
    assert record.status == FileStatus.COMPLETED
    assert record.client_name == "Acme Films"

    assert (await LinkRegistry(db_session).get(LINK)).upload_count == 1
    assert len(notifier.sent) == 1
    assert notifier.sent[0]["file_name"] == "My Clip.mov"
    assert notifier.sent[0]["link_id"] == LINK


@pytest.mark.anyio
async def test_register_accepts_expired_link(async_client: AsyncClient, db_session):
    await create_link(db_session, link_id=LINK, expired=True)

    r = await async_client.post(
        f"{API}/upload/register",
        json={
            "fileName": "late.mov", "fileSize": 1, "fileType": "video/quicktime",
            "linkId": LINK, "storageKey": f"uploads/{LINK}/late.mov",
        },
    )

    assert r.status_code == 200, r.text
    assert r.json()["storageKey"] == f"uploads/{LINK}/late.mov"


@pytest.mark.anyio
async def test_register_missing_fields_is_400(async_client: AsyncClient, link):
    r = await async_client.post(f"{API}/upload/register", json={"fileName": "a.mov", "linkId": LINK})

    assert r.status_code == 400
    assert set(r.json()["details"]["missing"]) == {"fileSize", "fileType", "storageKey"}


@pytest.mark.anyio
async def test_register_unknown_link_is_404(async_client: AsyncClient, notifier):
    r = await async_client.post(
        f"{API}/upload/register",
        json={
            "fileName": "a.mov", "fileSize": 1, "fileType": "video/quicktime",
            "linkId": "ghost", "storageKey": "uploads/ghost/a.mov",
        },
    )

    assert r.status_code == 404
    assert notifier.sent == []
