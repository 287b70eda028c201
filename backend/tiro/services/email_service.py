"""Outgoing e-mail over SMTP."""
from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText

from tiro.config import get_settings
from tiro.exceptions import EmailNotConfiguredError

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text e-mail. Raises on SMTP failure."""
    settings = get_settings()
    if not settings.SMTP_HOST:
        raise EmailNotConfiguredError("SMTP_HOST is not configured")

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = to

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(settings.EMAIL_FROM, [to], msg.as_string())
    logger.info("Sent e-mail '%s' to %s", subject, to)
