"""
Notification Services

Outgoing messages (spending alerts) are a side effect, never part of the
transaction that triggers them. Notifiers raise NotificationError on
failure; the caller logs it and moves on.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from splitledger.config import NotificationSettings, get_settings


logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """A message could not be delivered."""
    pass


def _is_transient(error: BaseException) -> bool:
    # SMTPException subclasses OSError; server replies (auth, refused) are final
    if isinstance(error, smtplib.SMTPResponseException):
        return False
    if isinstance(error, smtplib.SMTPRecipientsRefused):
        return False
    return isinstance(error, OSError)


class NotifierInterface(ABC):

    @abstractmethod
    async def send(self, recipient: str, subject: str, body: str) -> None:
        """
        Deliver a plain-text message.

        Raises:
            NotificationError: If delivery failed
        """
        pass


class LogOnlyNotifier(NotifierInterface):
    """Writes messages to the log instead of sending them. Keeps a copy."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, recipient: str, subject: str, body: str) -> None:
        self.sent.append((recipient, subject, body))
        logger.info("notification_logged", recipient=recipient, subject=subject)


class SmtpEmailNotifier(NotifierInterface):
    """
    Sends email over SMTP.

    Transient SMTP and socket errors are retried; authentication
    failures are not.
    """

    def __init__(self, settings: Optional[NotificationSettings] = None):
        self._settings = settings or get_settings().notification

    def _build_message(self, recipient: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
        return message

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def _deliver(self, message: EmailMessage) -> None:
        settings = self._settings
        with smtplib.SMTP(
            settings.smtp_host,
            settings.smtp_port,
            timeout=settings.timeout_seconds,
        ) as smtp:
            if settings.use_tls:
                smtp.starttls()
            if settings.smtp_user:
                smtp.login(settings.smtp_user, settings.smtp_password or "")
            smtp.send_message(message)

    async def send(self, recipient: str, subject: str, body: str) -> None:
        message = self._build_message(recipient, subject, body)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email to {recipient}: {e}")
        logger.info("email_sent", recipient=recipient, subject=subject)
