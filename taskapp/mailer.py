from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from urllib.parse import urlencode

from taskapp import settings

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, body: str) -> bool:
    """Send a plain-text message. Returns False instead of raising when delivery fails."""
    if not settings.EMAIL_USER or not settings.EMAIL_PASSWORD:
        logger.warning("Email credentials not configured; %r to %s not sent", subject, to)
        return False

    msg = EmailMessage()
    msg["From"] = settings.EMAIL_FROM or settings.EMAIL_USER
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=10) as smtp:
            smtp.starttls()
            smtp.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email to %s via %s:%s failed: %s", to, settings.EMAIL_HOST, settings.EMAIL_PORT, exc)
        return False

    logger.info("Email %r sent to %s", subject, to)
    return True

def _link(path: str, token: str) -> str:
    return f"{settings.FRONTEND_URL}/{path}?{urlencode({'token': token})}"

def send_verification_email(to: str, name: str, token: str) -> bool:
    url = _link("verify-email", token)
    body = (
        f"Hi {name},\n\n"
        f"Please verify your email address by opening this link:\n{url}\n\n"
        "This link will expire in 24 hours. "
        "If you didn't create an account, please ignore this email.\n"
    )
    return send_email(to, "Verify Your Email - Tasks App", body)

def send_reset_email(to: str, name: str, token: str) -> bool:
    url = _link("reset-password", token)
    body = (
        f"Hi {name},\n\n"
        f"You requested to reset your password. Set a new one here:\n{url}\n\n"
        "This link will expire in 1 hour. "
        "If you didn't request a password reset, please ignore this email.\n"
    )
    return send_email(to, "Password Reset - Tasks App", body)
