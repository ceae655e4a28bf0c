import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

import structlog

from .utils import format_money

logger = structlog.get_logger(__name__)

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@themarketx.com")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "MarketX")


def send_email(to: str, subject: str, body: str, html_body: str | None = None):
    from_value = formataddr((DEFAULT_SENDER_NAME, DEFAULT_SENDER)) if DEFAULT_SENDER_NAME else DEFAULT_SENDER
    if SMTP_USER and SMTP_PASSWORD:
        msg = EmailMessage()
        msg["From"] = from_value
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body or "")
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as smtp:
            smtp.starttls()
            smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    else:
        logger.info("email stub", sender=from_value, to=to, subject=subject, body=body)


def send_email_quietly(to: str, subject: str, body: str, html_body: str | None = None) -> bool:
    """Notifications never fail the operation that triggered them."""
    try:
        send_email(to, subject, body, html_body)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("email failed", to=to, subject=subject, error=str(exc))
        return False
    return True


def notify_document_signed(user, deal, doc) -> bool:
    title = doc.file_name.replace("_", " ").title()
    body = (
        f"Hi {user.full_name},\n\n"
        f"Your {title} for {deal.name or 'your deal'} has been signed and saved. "
        f"You can download a copy from your deal page.\n"
    )
    return send_email_quietly(user.email, f"{title} signed", body)


def notify_wire_instructions(user, deal, progress) -> bool:
    wire = deal.escrow_account_cn if user.last_language == "zh-CN" else deal.escrow_account
    body = (
        f"Hi {user.full_name},\n\n"
        f"Your subscription to {deal.name} is ready for funding. "
        f"Please wire {format_money(progress.amount)} using the instructions below.\n\n"
        f"{wire}\n"
    )
    return send_email_quietly(user.email, "Wire transfer instructions", body)
