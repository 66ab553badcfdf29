"""
Best-effort email delivery.

Nothing here raises to the caller: a missing recipient or SMTP configuration is
logged and skipped, and transport failures are logged and dropped.
"""
import logging
import mimetypes
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Dict, List, Optional

from config import Settings

logger = logging.getLogger(__name__)


def smtp_configured(settings: Settings) -> bool:
    return bool(settings.smtp_host and settings.smtp_port and settings.smtp_user and settings.smtp_pass)


def _attach(msg: EmailMessage, attachment: Dict[str, str]) -> None:
    path = Path(attachment["path"])
    content_type = attachment.get("content_type") or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    maintype, _, subtype = content_type.partition("/")
    msg.add_attachment(
        path.read_bytes(),
        maintype=maintype,
        subtype=subtype or "octet-stream",
        filename=attachment.get("filename") or path.name,
    )


def send_email(
    settings: Settings,
    to: Optional[str],
    subject: str,
    html: str,
    attachments: Optional[List[Dict[str, str]]] = None,
) -> bool:
    """Send an HTML email if SMTP is configured. Returns True when handed to the server."""
    if not to:
        logger.info("[notify] No recipient; skipping email. subject=%s", subject)
        return False
    if not smtp_configured(settings):
        logger.info("[notify] SMTP not configured; intended to=%s subject=%s", to, subject)
        return False

    # App passwords are usually displayed in groups separated by spaces
    password = "".join(settings.smtp_pass.split())

    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.smtp_from or settings.smtp_user
        msg["To"] = to
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")
        for attachment in attachments or []:
            _attach(msg, attachment)

        if settings.smtp_port == 465:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=10)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
        with server:
            if settings.smtp_port != 465:
                server.ehlo()
                server.starttls()
                server.ehlo()
            server.login(settings.smtp_user, password)
            server.send_message(msg)
        logger.info("[notify] Email sent to %s", to)
        return True
    except Exception:
        logger.exception("[notify] Failed to send email to %s", to)
        return False
