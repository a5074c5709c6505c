# tests/test_reconciler.py
from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from reeldrop.core.exceptions import (
    BadRequestError,
    ConcurrencyConflictError,
    FileRecordNotFoundError,
    InvalidIdentifierError,
)
from reeldrop.repositories.files import FileRepository
from reeldrop.schemas.enums import BulkAction, FileStatus, StorageTier
from reeldrop.services.file_reconciler import FileReconciler, derive_quality, is_transition_allowed
from tests.fixtures.app import API
from tests.fixtures.factories import create_file


# ─────────────────────────────────────────────────────────────
# Status machine
# ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (FileStatus.UPLOADING, FileStatus.PROCESSING, True),
        (FileStatus.UPLOADING, FileStatus.COMPLETED, True),
        (FileStatus.PROCESSED, FileStatus.COMPLETED, True),
        (FileStatus.COMPLETED, FileStatus.PROCESSING, False),
        (FileStatus.PROCESSED, FileStatus.PROCESSED, False),
        (FileStatus.UPLOADING, FileStatus.FAILED, True),
        (FileStatus.PROCESSED, FileStatus.FAILED, False),
        (FileStatus.COMPLETED, FileStatus.ERROR, True),
        (FileStatus.ERROR, FileStatus.COMPLETED, False),
        (FileStatus.FAILED, FileStatus.PROCESSING, False),
    ],
)
def test_is_transition_allowed(current, target, allowed):
    assert is_transition_allowed(current, target) is allowed


@pytest.mark.parametrize(
    "profile, quality",
    [("h264_1080p", "1080p"), ("proxy-720P-low", "720p"), ("audio_only", None), (None, None)],
)
def test_derive_quality(profile, quality):
    assert derive_quality(profile) == quality


@pytest.mark.anyio
async def test_advance_status_ignores_backward_moves(ctx, db_session):
    record = await create_file(db_session, status=FileStatus.PROCESSED)
    files = FileReconciler(ctx, db_session)

    assert (await files.advance_status(record.id, FileStatus.PROCESSING)).status == FileStatus.PROCESSED
    updated = await files.advance_status(record.id, FileStatus.COMPLETED)
    assert updated.status == FileStatus.COMPLETED
    assert updated.version == 2


@pytest.mark.anyio
async def test_get_rejects_bad_and_unknown_ids(ctx, db_session):
    files = FileReconciler(ctx, db_session)
    with pytest.raises(InvalidIdentifierError):
        await files.get("not-a-uuid")
    with pytest.raises(FileRecordNotFoundError):
        await files.get(uuid.uuid4())


# ─────────────────────────────────────────────────────────────
# Tier updates under compare-and-swap
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_tier_update_merges_and_bumps_version(ctx, db_session):
    record = await create_file(db_session, r2_data={"keys": ["a"], "status": "pending"})
    files = FileReconciler(ctx, db_session)

    updated = await files.apply_tier_update(record.id, StorageTier.R2, {"status": "complete"})

    assert updated.r2_data == {"keys": ["a"], "status": "complete"}
    assert updated.version == 2


@pytest.mark.anyio
async def test_concurrent_tier_updates_both_persist(ctx, db_session, monkeypatch):
    """A competing writer lands between read and write; the retry keeps both tiers."""
    record = await create_file(db_session)
    files = FileReconciler(ctx, db_session)
    real_cas = FileRepository.cas_update
    raced = {"done": False}

    async def racing_cas(self, file_id, seen_version, values):
        if not raced["done"]:
            raced["done"] = True
            assert await real_cas(self, file_id, seen_version, {"lucidlink_data": {"path": "/fs/a", "status": "complete"}})
            await self.session.commit()
        return await real_cas(self, file_id, seen_version, values)

    monkeypatch.setattr(FileRepository, "cas_update", racing_cas)

    updated = await files.apply_tier_update(record.id, StorageTier.WASABI, {"originalKey": "originals/a", "status": "complete"})

    assert updated.lucidlink_data == {"path": "/fs/a", "status": "complete"}
    assert updated.wasabi_data == {"originalKey": "originals/a", "status": "complete"}
    assert updated.version == 3


@pytest.mark.anyio
async def test_persistent_conflict_raises_409(ctx, db_session, monkeypatch):
    record = await create_file(db_session)
    files = FileReconciler(ctx, db_session)

    async def always_stale(self, file_id, seen_version, values):
        return False

    monkeypatch.setattr(FileRepository, "cas_update", always_stale)

    with pytest.raises(ConcurrencyConflictError) as exc:
        await files.apply_tier_update(record.id, StorageTier.R2, {"status": "complete"})
    assert exc.value.status_code == 409
    assert exc.value.details["attempts"] == ctx.settings.RECONCILE_MAX_ATTEMPTS


@pytest.mark.anyio
async def test_callable_patch_sees_current_document(ctx, db_session):
    record = await create_file(db_session, wasabi_data={"proxyKeys": ["p/360p.mp4"]})
    files = FileReconciler(ctx, db_session)

    updated = await files.apply_tier_update(
        record.id,
        StorageTier.WASABI,
        lambda cur: {"proxyKeys": [*cur.get("proxyKeys", []), "p/720p.mp4"]},
    )

    assert updated.wasabi_data["proxyKeys"] == ["p/360p.mp4", "p/720p.mp4"]


# ─────────────────────────────────────────────────────────────
# Proxies and asset creation
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_upsert_proxies_is_idempotent(ctx, db_session):
    record = await create_file(db_session)
    files = FileReconciler(ctx, db_session)
    batch = [
        {"profile": "h264_360p", "url": "https://cdn/360.mp4"},
        {"quality": "1080p", "url": "https://cdn/1080.mp4"},
    ]

    await files.upsert_proxies(record.id, batch)
    proxies = await files.upsert_proxies(record.id, [*batch, {"quality": "360p", "r2Key": "proxies/360.mp4"}])

    assert [p.quality for p in proxies] == ["360p", "1080p"]
    assert proxies[0].url == "https://cdn/360.mp4"
    assert proxies[0].r2_key == "proxies/360.mp4"


@pytest.mark.anyio
async def test_upsert_proxies_writes_nothing_when_an_entry_has_no_quality(ctx, db_session):
    record = await create_file(db_session)
    files = FileReconciler(ctx, db_session)

    with pytest.raises(BadRequestError):
        await files.upsert_proxies(record.id, [{"profile": "h264_720p"}, {"profile": "audio_only"}])

    assert await files.proxies(record.id) == []


@pytest.mark.anyio
async def test_create_from_asset_replay_returns_existing(ctx, db_session):
    files = FileReconciler(ctx, db_session)

    first, created = await files.create_from_asset("asset-1", file_name="a.mov", project_id="proj-1")
    again, created_again = await files.create_from_asset("asset-1", file_name="a.mov")

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert first.status == FileStatus.UPLOADING
    assert first.frameio_data["proxyStatus"] == "pending"


# ─────────────────────────────────────────────────────────────
# Bulk actions (service + HTTP)
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_bulk_status_update_collects_failures(ctx, db_session):
    ok = await create_file(db_session, status=FileStatus.PROCESSED)
    broken = await create_file(db_session, status=FileStatus.ERROR)
    files = FileReconciler(ctx, db_session)

    result = await files.bulk(
        BulkAction.STATUS_UPDATE, [str(ok.id), str(broken.id), "garbage"], status=FileStatus.COMPLETED
    )

    assert result["success"] == [str(ok.id)]
    assert [f["fileId"] for f in result["failed"]] == [str(broken.id), "garbage"]
    assert result["failed"][0]["error"] == "Invalid transition from error to completed"


@pytest.mark.anyio
async def test_bulk_delete_removes_objects(async_client: AsyncClient, admin_headers, db_session, archive_storage, edge_storage):
    archive_storage.objects["uploads/link/interview.mov"] = b"x"
    edge_storage.objects["proxies/a/720p.mp4"] = b"y"
    record = await create_file(db_session, r2_data={"keys": ["proxies/a/720p.mp4"]})

    r = await async_client.post(
        f"{API}/files/bulk", json={"action": "delete", "fileIds": [str(record.id)]}, headers=admin_headers
    )

    assert r.status_code == 200, r.text
    assert r.json()["success"] == [str(record.id)]
    assert archive_storage.objects == {}
    assert edge_storage.objects == {}
    assert (await async_client.get(f"{API}/files/{record.id}", headers=admin_headers)).status_code == 404


@pytest.mark.anyio
async def test_bulk_download_signs_completed_files(async_client: AsyncClient, admin_headers, db_session):
    ready = await create_file(db_session)
    pending = await create_file(db_session, status=FileStatus.UPLOADING)

    r = await async_client.post(
        f"{API}/files/bulk",
        json={"action": "download", "fileIds": [str(ready.id), str(pending.id)]},
        headers=admin_headers,
    )

    body = r.json()
    assert [d["fileId"] for d in body["downloads"]] == [str(ready.id)]
    assert body["failed"] == [{"fileId": str(pending.id), "error": "File is not ready for download"}]


@pytest.mark.anyio
async def test_bulk_status_update_requires_status(async_client: AsyncClient, admin_headers):
    r = await async_client.post(
        f"{API}/files/bulk", json={"action": "status-update", "fileIds": ["x"]}, headers=admin_headers
    )
    assert r.status_code == 400


# ─────────────────────────────────────────────────────────────
# Admin views
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_get_file_includes_tiers_and_proxies(async_client: AsyncClient, admin_headers, ctx, db_session):
    record = await create_file(db_session, wasabi_data={"status": "complete"})
    await FileReconciler(ctx, db_session).upsert_proxies(record.id, [{"quality": "720p", "url": "https://cdn/720"}])

    r = await async_client.get(f"{API}/files/{record.id}", headers=admin_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["id"] == str(record.id)
    assert body["wasabiData"] == {"status": "complete"}
    assert body["proxies"] == [
        {"quality": "720p", "profile": None, "url": "https://cdn/720", "r2Key": None, "wasabiKey": None}
    ]


@pytest.mark.anyio
async def test_stream_url_is_cached(async_client: AsyncClient, admin_headers, db_session, archive_storage):
    record = await create_file(db_session)

    first = await async_client.get(f"{API}/files/{record.id}/stream-url", headers=admin_headers)
    second = await async_client.get(f"{API}/files/{record.id}/stream-url", headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["cached"] is False
    assert first.json()["expiresIn"] == 24 * 3600
    assert second.json()["cached"] is True
    assert second.json()["url"] == first.json()["url"]
    assert archive_storage.ops().count("presigned_get") == 1


@pytest.mark.anyio
async def test_stream_url_requires_completed_file(async_client: AsyncClient, admin_headers, db_session):
    record = await create_file(db_session, status=FileStatus.PROCESSING)

    r = await async_client.get(f"{API}/files/{record.id}/stream-url", headers=admin_headers)

    assert r.status_code == 400
