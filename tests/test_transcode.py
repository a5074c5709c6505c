# tests/test_transcode.py
from __future__ import annotations

import json

import pytest
from httpx import AsyncClient

from reeldrop.services.file_reconciler import FileReconciler
from tests.fixtures.app import API
from tests.fixtures.factories import create_file


def _url(record) -> str:
    return f"{API}/files/{record.id}/transcode"


@pytest.mark.anyio
async def test_transcode_dispatches_to_worker(async_client: AsyncClient, admin_headers, ctx, db_session, upstreams):
    record = await create_file(db_session)

    r = await async_client.post(_url(record), json={"qualities": ["540p", "1080p"]}, headers=admin_headers)

    assert r.status_code == 202, r.text
    assert r.json() == {
        "success": True,
        "fileId": str(record.id),
        "jobId": "job-1",
        "status": "processing",
        "qualities": ["540p", "1080p"],
    }

    (sent,) = upstreams.sent_to("/api/transcode")
    assert sent.headers["Authorization"] == "Bearer worker-token"
    payload = json.loads(sent.content)
    assert payload["fileId"] == str(record.id)
    assert payload["qualities"] == ["540p", "1080p"]
    assert payload["webhookUrl"] == "http://api.test/api/v1/webhooks/transcode"
    assert payload["sourceUrl"].startswith("https://reeldrop-uploads.s3.test/uploads/link/interview.mov")

    stored = await FileReconciler(ctx, db_session).get(record.id)
    assert stored.transcoding["jobId"] == "job-1"
    assert stored.transcoding["status"] == "processing"
    assert stored.transcoding["qualities"] == ["540p", "1080p"]


@pytest.mark.anyio
async def test_transcode_defaults_qualities(async_client: AsyncClient, admin_headers, db_session, test_settings):
    record = await create_file(db_session)

    r = await async_client.post(_url(record), headers=admin_headers)

    assert r.status_code == 202, r.text
    assert r.json()["qualities"] == test_settings.TRANSCODE_DEFAULT_QUALITIES


@pytest.mark.anyio
async def test_second_transcode_while_processing_is_409(async_client: AsyncClient, admin_headers, db_session, upstreams):
    record = await create_file(db_session)

    assert (await async_client.post(_url(record), headers=admin_headers)).status_code == 202
    r = await async_client.post(_url(record), headers=admin_headers)

    assert r.status_code == 409
    assert r.json()["details"]["jobId"] == "job-1"
    assert len(upstreams.sent_to("/api/transcode")) == 1


@pytest.mark.anyio
async def test_transcode_lock_held_is_409(async_client: AsyncClient, admin_headers, db_session, mock_redis, upstreams):
    record = await create_file(db_session)
    mock_redis.store[f"lock:transcode:{record.id}"] = "another-request"

    r = await async_client.post(_url(record), headers=admin_headers)

    assert r.status_code == 409
    assert upstreams.requests == []
    assert mock_redis.store[f"lock:transcode:{record.id}"] == "another-request"


@pytest.mark.anyio
async def test_transcode_releases_lock(async_client: AsyncClient, admin_headers, db_session, mock_redis):
    record = await create_file(db_session)

    assert (await async_client.post(_url(record), headers=admin_headers)).status_code == 202

    assert f"lock:transcode:{record.id}" not in mock_redis.store


@pytest.mark.anyio
async def test_transcode_without_redis_uses_state_check(async_client: AsyncClient, admin_headers, db_session, mock_redis):
    mock_redis.healthy = False
    record = await create_file(db_session)

    assert (await async_client.post(_url(record), headers=admin_headers)).status_code == 202
    assert (await async_client.post(_url(record), headers=admin_headers)).status_code == 409


@pytest.mark.anyio
async def test_worker_failure_is_500_and_leaves_no_job(async_client: AsyncClient, admin_headers, ctx, db_session, upstreams):
    upstreams.transcode_status = 503
    record = await create_file(db_session)

    r = await async_client.post(_url(record), headers=admin_headers)

    assert r.status_code == 500
    assert r.json()["detail"].startswith("transcoding worker: Failed to start transcoding")
    assert (await FileReconciler(ctx, db_session).get(record.id)).transcoding is None


@pytest.mark.anyio
async def test_worker_response_without_job_id(async_client: AsyncClient, admin_headers, db_session, upstreams):
    upstreams.transcode_body = {"queued": True}
    record = await create_file(db_session)

    r = await async_client.post(_url(record), headers=admin_headers)

    assert r.status_code == 500
    assert "jobId" in r.json()["detail"]


@pytest.mark.anyio
async def test_transcode_requires_stored_source(async_client: AsyncClient, admin_headers, db_session, upstreams):
    record = await create_file(db_session, storage_key=None)

    r = await async_client.post(_url(record), headers=admin_headers)

    assert r.status_code == 400
    assert upstreams.requests == []


@pytest.mark.anyio
async def test_transcode_requires_admin(async_client: AsyncClient, db_session):
    record = await create_file(db_session)
    assert (await async_client.post(_url(record))).status_code == 401
