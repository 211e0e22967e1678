"""Outgoing mail.

Delivery is fire-and-forget: a failed send is logged and never fails the request
that triggered it. When SMTP is not configured, nothing is sent.
"""

from __future__ import annotations

import smtplib
import threading
from email.message import EmailMessage
from html import escape

from bookstore_platform.config import Config


def _debug(msg: str) -> None:
    print(f"[mail] {msg}")


def mail_enabled(cfg: Config) -> bool:
    return bool(cfg.SMTP_HOST and cfg.MAIL_FROM)


def deliver(cfg: Config, *, to: str, subject: str, html: str) -> bool:
    """Send one message synchronously. Returns False (and logs) on any failure."""
    if not mail_enabled(cfg):
        return False

    msg = EmailMessage()
    msg["From"] = str(cfg.MAIL_FROM)
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(str(cfg.SMTP_HOST), int(cfg.SMTP_PORT), timeout=30) as smtp:
            if cfg.SMTP_STARTTLS:
                smtp.starttls()
            if cfg.SMTP_USERNAME and cfg.SMTP_PASSWORD:
                smtp.login(cfg.SMTP_USERNAME, cfg.SMTP_PASSWORD)
            smtp.send_message(msg)
    except Exception as e:
        _debug(f"failed to send '{subject}' to {to}: {e}")
        return False

    _debug(f"sent '{subject}' to {to}")
    return True


def send_mail_async(cfg: Config, *, to: str, subject: str, html: str) -> threading.Thread | None:
    if not mail_enabled(cfg) or not to:
        return None
    t = threading.Thread(
        target=deliver,
        kwargs={"cfg": cfg, "to": to, "subject": subject, "html": html},
        name="mail-sender",
        daemon=True,
    )
    t.start()
    return t


def store_decision_email(*, username: str, store_name: str | None, approved: bool) -> tuple[str, str]:
    store = escape(store_name or "your store")
    username = escape(username)
    if approved:
        subject = "Your bookstore has been approved"
        body = (
            f"<p>Hi {username},</p>"
            f"<p>Good news: <strong>{store}</strong> has been approved. "
            "You can now sign in and start listing books.</p>"
        )
    else:
        subject = "Your bookstore application was not approved"
        body = (
            f"<p>Hi {username},</p>"
            f"<p>Unfortunately <strong>{store}</strong> was not approved at this time. "
            "Please contact the administrator for details.</p>"
        )
    html = f'<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{body}</div>'
    return subject, html
