# reeldrop/services/notifications.py
from __future__ import annotations

"""
ReelDrop — Upload notifications (FastAPI-Mail)
==============================================

Sends the "new upload" email to the configured recipients after a file is
registered.

Behavior
--------
- Background-safe: failures are **logged**, never raised. Registration has
  already succeeded by the time a notification is sent.
- When SMTP is not configured (or no recipients are set) the message is logged
  as a dry run instead of sent.
- Plain-text body; template formatting is intentionally not provided.
"""

import logging
from typing import List, Optional

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from reeldrop.core.config import Settings, secret_value

logger = logging.getLogger(__name__)


def _human_size(num: int) -> str:
    size = float(num or 0)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} TB"  # pragma: no cover


class UploadNotifier:
    """Lazily configured FastMail sender bound to one `Settings`."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._fastmail: Optional[FastMail] = None

    # ── configuration ────────────────────────────────────────
    @property
    def recipients(self) -> List[str]:
        return self.settings.notify_recipients

    def _should_send_real_email(self) -> bool:
        return bool(self.settings.SMTP_HOST and self.recipients)

    def _client(self) -> FastMail:
        if self._fastmail is None:
            s = self.settings
            use_ssl = s.SMTP_PORT == 465
            password = secret_value(s.SMTP_PASSWORD) or ""
            conf = ConnectionConfig(
                MAIL_USERNAME=s.SMTP_USERNAME or "",
                MAIL_PASSWORD=password,
                MAIL_FROM=s.EMAIL_FROM,
                MAIL_PORT=s.SMTP_PORT,
                MAIL_SERVER=s.SMTP_HOST or "localhost",
                MAIL_FROM_NAME=s.EMAIL_FROM_NAME,
                MAIL_STARTTLS=not use_ssl,
                MAIL_SSL_TLS=use_ssl,
                USE_CREDENTIALS=bool(s.SMTP_USERNAME and password),
            )
            self._fastmail = FastMail(conf)
        return self._fastmail

    # ── public API ───────────────────────────────────────────
    async def send_upload_completed(
        self,
        *,
        file_id: str,
        file_name: str,
        file_size: int,
        client_name: Optional[str],
        project_name: Optional[str],
        link_id: Optional[str],
    ) -> None:
        """Notify recipients that a file finished uploading. Never raises."""
        subject = f"New upload: {file_name} ({client_name or 'unknown client'})"
        body = "\n".join(
            [
                "A new file was uploaded.",
                "",
                f"File:    {file_name}",
                f"Size:    {_human_size(file_size)}",
                f"Client:  {client_name or '-'}",
                f"Project: {project_name or '-'}",
                f"Link:    {link_id or '-'}",
                f"File ID: {file_id}",
            ]
        )

        if not self._should_send_real_email():
            logger.info("📨 [DRY-RUN] Upload notification subject=%s\n%s", subject, body)
            return

        try:
            message = MessageSchema(
                subject=subject,
                recipients=self.recipients,
                body=body,
                subtype=MessageType.plain,
            )
            await self._client().send_message(message)
            logger.info("📨 Upload notification sent (file_id=%s, to=%d)", file_id, len(self.recipients))
        except Exception:
            logger.exception("❌ Upload notification failed (file_id=%s)", file_id)


__all__ = ["UploadNotifier"]
