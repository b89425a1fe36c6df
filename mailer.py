"""Outbound email for password recovery codes."""
import os
import smtplib
from email.message import EmailMessage

import structlog

EMAIL_HOST = os.getenv("EMAIL_HOST")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", 587))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
EMAIL_SECURE = os.getenv("EMAIL_SECURE", "false").lower() == "true"
EMAIL_FROM = os.getenv("EMAIL_FROM") or EMAIL_USER or "no-reply@localhost"

RECOVERY_CODE_TTL_MINUTES = 15

logger = structlog.get_logger(__name__)


def build_recovery_message(to_address: str, name: str, code: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = "Password recovery code"
    message["From"] = EMAIL_FROM
    message["To"] = to_address
    message.set_content(
        f"Hello {name},\n\n"
        "You asked to reset the password of your account.\n"
        f"Your recovery code is: {code}\n"
        f"This code is valid for {RECOVERY_CODE_TTL_MINUTES} minutes.\n\n"
        "If you did not ask for this, please ignore this email.\n"
    )
    return message


def send_recovery_code(to_address: str, name: str, code: str) -> None:
    """Deliver a recovery code. Runs as a background task, so failures are only logged."""
    if not EMAIL_HOST:
        logger.warning("mail_not_configured", to=to_address)
        return
    message = build_recovery_message(to_address, name, code)
    try:
        if EMAIL_SECURE:
            server = smtplib.SMTP_SSL(EMAIL_HOST, EMAIL_PORT, timeout=10)
        else:
            server = smtplib.SMTP(EMAIL_HOST, EMAIL_PORT, timeout=10)
        with server:
            if not EMAIL_SECURE:
                server.starttls()
            if EMAIL_USER and EMAIL_PASS:
                server.login(EMAIL_USER, EMAIL_PASS)
            server.send_message(message)
    except (smtplib.SMTPException, OSError):
        logger.exception("mail_delivery_failed", to=to_address)
        return
    logger.info("recovery_code_sent", to=to_address)
