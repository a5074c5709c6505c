# tests/test_notifications.py
from __future__ import annotations

import pytest
from fastapi_mail import FastMail

from reeldrop.services.notifications import UploadNotifier, _human_size

UPLOAD = dict(
    file_id="f-1",
    file_name="interview.mov",
    file_size=3 * 1024 * 1024,
    client_name="Acme Films",
    project_name="Spring Campaign",
    link_id="link-1",
)


@pytest.fixture()
def smtp_settings(test_settings):
    return test_settings.model_copy(
        update={"SMTP_HOST": "smtp.reeldrop.io", "NOTIFY_EMAILS": "ops@reeldrop.io, producer@reeldrop.io"}
    )


def test_human_size():
    assert _human_size(512) == "512 B"
    assert _human_size(3 * 1024 * 1024) == "3.0 MB"


@pytest.mark.anyio
async def test_dry_run_without_smtp(test_settings, monkeypatch):
    sent = []

    async def fake_send(self, message, template_name=None):
        sent.append(message)

    monkeypatch.setattr(FastMail, "send_message", fake_send)

    await UploadNotifier(test_settings).send_upload_completed(**UPLOAD)

    assert sent == []


@pytest.mark.anyio
async def test_sends_to_every_recipient(smtp_settings, monkeypatch):
    sent = []

    async def fake_send(self, message, template_name=None):
        sent.append(message)

    monkeypatch.setattr(FastMail, "send_message", fake_send)

    await UploadNotifier(smtp_settings).send_upload_completed(**UPLOAD)

    (message,) = sent
    assert message.subject == "New upload: interview.mov (Acme Films)"
    assert len(message.recipients) == 2
    assert "producer@reeldrop.io" in str(message.recipients[1])
    assert "Size:    3.0 MB" in message.body


@pytest.mark.anyio
async def test_send_failure_is_not_raised(smtp_settings, monkeypatch):
    async def broken_send(self, message, template_name=None):
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr(FastMail, "send_message", broken_send)

    await UploadNotifier(smtp_settings).send_upload_completed(**UPLOAD)
