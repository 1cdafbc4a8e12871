# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email notifier: console fallback, SMTP delivery and failure mapping."""

import smtplib

import pytest

from authstack_server.errors import DeliveryFailed
from authstack_server.services import email as email_service
from authstack_server.services.email import EmailNotifier, wrap_body_html


class RecordingSMTP:
    instances: list["RecordingSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.sent = []
        RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.user = user

    def sendmail(self, sender, recipients, message):
        self.sent.append((sender, recipients, message))


class RefusingSMTP(RecordingSMTP):
    def __init__(self, host, port, timeout=None):
        raise smtplib.SMTPConnectError(421, b"try later")


def _smtp_settings(settings):
    return settings.model_copy(update={"smtp_host": "smtp.example.com", "smtp_user": "mailer", "smtp_password": "pw"})


async def test_unconfigured_notifier_logs_instead_of_sending(settings, caplog):
    notifier = EmailNotifier(settings)
    assert not notifier.configured
    with caplog.at_level("INFO"):
        await notifier.send("ann@example.com", "Your Login OTP", "Your OTP code is: 123456")
    assert "ann@example.com" in caplog.text


async def test_smtp_delivery_uses_timeout(settings, monkeypatch):
    RecordingSMTP.instances = []
    monkeypatch.setattr(email_service.smtplib, "SMTP", RecordingSMTP)
    await EmailNotifier(_smtp_settings(settings)).send("ann@example.com", "Your Login OTP", "code 123456")
    smtp = RecordingSMTP.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.example.com", 587)
    assert smtp.timeout == settings.smtp_timeout_seconds
    sender, recipients, message = smtp.sent[0]
    assert recipients == ["ann@example.com"]
    assert "Your Login OTP" in message


async def test_smtp_failure_raises_delivery_failed(settings, monkeypatch):
    monkeypatch.setattr(email_service.smtplib, "SMTP", RefusingSMTP)
    with pytest.raises(DeliveryFailed):
        await EmailNotifier(_smtp_settings(settings)).send("ann@example.com", "Your Login OTP", "code 123456")


def test_html_body_is_escaped():
    assert "&lt;b&gt;" in wrap_body_html("<b>hi</b>")


async def test_production_without_smtp_fails_instead_of_logging(settings, caplog):
    notifier = EmailNotifier(settings.model_copy(update={"environment": "production"}))
    with caplog.at_level("INFO"):
        with pytest.raises(DeliveryFailed):
            await notifier.send("ann@example.com", "Your Login OTP", "Your OTP code is: 123456")
    assert "123456" not in caplog.text
