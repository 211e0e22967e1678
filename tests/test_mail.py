from __future__ import annotations

import smtplib
from dataclasses import replace

from bookstore_platform.mail import deliver, mail_enabled, send_mail_async, store_decision_email


def test_mail_disabled_without_smtp(cfg):
    assert not mail_enabled(cfg)
    assert send_mail_async(cfg, to="x@example.com", subject="s", html="<p>x</p>") is None
    assert deliver(cfg, to="x@example.com", subject="s", html="<p>x</p>") is False


def test_delivery_failure_is_swallowed(cfg, monkeypatch):
    def _boom(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "unavailable")

    monkeypatch.setattr(smtplib, "SMTP", _boom)
    enabled = replace(cfg, SMTP_HOST="smtp.example.com", MAIL_FROM="noreply@example.com")
    assert deliver(enabled, to="x@example.com", subject="s", html="<p>x</p>") is False


def test_decision_email_escapes_store_name():
    subject, html = store_decision_email(username="acme", store_name="<b>Acme</b>", approved=False)
    assert "not approved" in subject
    assert "&lt;b&gt;Acme&lt;/b&gt;" in html
