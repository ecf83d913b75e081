from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app
from markupsafe import escape

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, body: str, *, html: str | None = None) -> tuple[bool, str]:
    """
    Send an email using SMTP configuration from app.config.
    Returns (ok, error_message).
    """
    cfg = current_app.config
    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    smtp_port = cfg.get("SMTP_PORT") or 587
    smtp_username = (cfg.get("SMTP_USERNAME") or "").strip()
    smtp_password = (cfg.get("SMTP_PASSWORD") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or smtp_username or "").strip()

    if not smtp_server:
        return False, "SMTP server not configured (SMTP_SERVER environment variable missing)"

    msg = MIMEMultipart("alternative")
    msg["From"] = email_from
    msg["To"] = to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain", "utf-8"))
    if html:
        msg.attach(MIMEText(html, "html", "utf-8"))

    try:
        with smtplib.SMTP(smtp_server, int(smtp_port), timeout=30) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(email_from, [to], msg.as_string())
    except smtplib.SMTPAuthenticationError as e:
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        return False, f"SMTP error: {e}"

    logger.info("Email sent: to=%s subject=%s", to, subject)
    return True, ""


def send_password_reset_email(to: str, name: str, token: str) -> tuple[bool, str]:
    base_url = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    link = f"{base_url}/reset-password?token={token}"
    body = (
        f"Hello {name},\n\n"
        "We received a request to reset your password. Use the link below within one hour:\n\n"
        f"{link}\n\n"
        "If you did not request this, you can ignore this email.\n"
    )
    html = (
        f"<p>Hello {escape(name)},</p>"
        "<p>We received a request to reset your password. Use the link below within one hour:</p>"
        f'<p><a href="{link}">Reset your password</a></p>'
        "<p>If you did not request this, you can ignore this email.</p>"
    )
    return send_email(to, "Reset your password", body, html=html)
