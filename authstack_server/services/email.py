# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email delivery for one-time codes. In development, logs to console when SMTP not configured."""

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from authstack_server.config import Settings
from authstack_server.errors import DeliveryFailed

logger = logging.getLogger(__name__)


def wrap_body_html(plain_body: str) -> str:
    """Wrap plain text body in minimal HTML."""
    body_escaped = html.escape(plain_body).replace("\n", "<br>\n")
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: system-ui, sans-serif; color: #333; max-width: 560px;">
<div style="white-space: pre-wrap;">{body_escaped}</div>
</body>
</html>"""


class EmailNotifier:
    """Sends messages over SMTP with STARTTLS. Failures raise DeliveryFailed and are not retried."""

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def configured(self) -> bool:
        return bool(self._settings.smtp_host and self._settings.smtp_user)

    def _build_message(self, to: str, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._settings.smtp_from
        msg["To"] = to
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(wrap_body_html(body), "html"))
        return msg

    def _deliver(self, to: str, msg: MIMEMultipart) -> None:
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as server:
            server.starttls()
            server.login(s.smtp_user, s.smtp_password or "")
            server.sendmail(s.smtp_from, [to], msg.as_string())

    async def send(self, to: str, subject: str, body: str) -> None:
        if not self.configured:
            if self._settings.is_production:
                logger.error("SMTP not configured; cannot deliver email to %s", to)
                raise DeliveryFailed()
            logger.info("Email (SMTP not configured): To=%s Subject=%s Body=%s", to, subject, body[:200])
            return
        msg = self._build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._deliver, to, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to, e)
            raise DeliveryFailed() from e
        logger.info("Email sent to %s", to)
