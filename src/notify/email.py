"""Email delivery for warnings.

Uses stdlib smtplib, upgrading to STARTTLS when the server offers it.
Runs synchronously; the notifier calls it through ``asyncio.to_thread``.
"""

import logging
import smtplib
from email.mime.text import MIMEText

from src.document import SmtpConfig
from src.errors import TransportError

logger = logging.getLogger(__name__)


def is_email_configured(smtp: SmtpConfig, recipient: str) -> bool:
    """Check whether the SMTP server, sender and recipient are present."""
    return bool(smtp.server and (smtp.from_address or smtp.username) and recipient)


def send_warning_email(smtp: SmtpConfig, recipient: str, subject: str, body: str, timeout: float = 20.0) -> None:
    """Send a plain-text warning email.

    Raises:
        TransportError: If the message could not be delivered.
    """
    if not is_email_configured(smtp, recipient):
        msg = "Email not configured (smtp server, sender or recipient missing)"
        raise TransportError(msg)

    sender = smtp.from_address or smtp.username
    message = MIMEText(body, "plain", "utf-8")
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = recipient

    try:
        with smtplib.SMTP(smtp.server, smtp.port, timeout=timeout) as server:
            _ = server.ehlo()
            if server.has_extn("starttls"):
                _ = server.starttls()
                _ = server.ehlo()
            if smtp.username:
                _ = server.login(smtp.username, smtp.password)
            _ = server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        msg = f"Failed to send email to {recipient}: {exc}"
        raise TransportError(msg) from exc

    logger.info("Warning email sent to %s with subject '%s'", recipient, subject)
