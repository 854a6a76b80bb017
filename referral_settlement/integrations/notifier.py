"""Plain-text e-mail notifications over SMTP."""
import asyncio
import smtplib
from email.mime.text import MIMEText
from typing import Optional

import structlog

from referral_settlement.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """Raised when a message could not be handed to the SMTP server."""

    pass


class EmailNotifier:
    """Sends settlement e-mails through an unauthenticated SMTP relay."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.timeout = settings.smtp_timeout
        self.from_email = settings.mail_from

    def _send_sync(self, recipient: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = recipient

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.sendmail(self.from_email, [recipient], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email to {recipient}: {e}") from e

    async def send(self, recipient: str, body: str, subject: str = "Order completed") -> None:
        """
        Send one message.

        Args:
            recipient: Destination address
            body: Plain-text body
            subject: Subject line

        Raises:
            NotificationError: If the SMTP exchange fails
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_sync, recipient, subject, body)
        logger.info("email_sent", recipient=recipient, subject=subject)
