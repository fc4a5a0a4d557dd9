"""
Transactional email delivery.

SendGridMailClient delivers through the SendGrid v3 API. LoggingMailClient
is installed when no API key is configured and only logs what would have
been sent.
"""

import asyncio
import base64
from typing import Protocol

from pydantic import BaseModel
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Disposition,
    Email,
    FileContent,
    FileName,
    FileType,
    Mail,
    To,
)

from app.errors import InternalError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ACCEPTED_STATUS = 202


class MailError(InternalError):
    """Raised when the provider rejects or fails to deliver a message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, op="mail.send")
        self.provider_status = status_code


class EmailMessage(BaseModel):
    from_name: str
    from_email: str
    to_name: str
    to_email: str
    subject: str
    text_content: str
    html_content: str
    ics_attachment: str = ""


class MailClient(Protocol):
    async def send(self, message: EmailMessage) -> int: ...


class SendGridMailClient:
    def __init__(self, api_key: str):
        self._client = SendGridAPIClient(api_key)

    def _build(self, message: EmailMessage) -> Mail:
        mail = Mail(
            from_email=Email(message.from_email, message.from_name),
            to_emails=To(message.to_email, message.to_name or None),
            subject=message.subject,
            plain_text_content=message.text_content,
            html_content=message.html_content,
        )
        if message.ics_attachment:
            encoded = base64.b64encode(message.ics_attachment.encode("utf-8")).decode("ascii")
            mail.attachment = Attachment(
                FileContent(encoded),
                FileName("event.ics"),
                FileType("text/calendar"),
                Disposition("attachment"),
            )
        return mail

    async def send(self, message: EmailMessage) -> int:
        mail = self._build(message)
        try:
            # The SDK is synchronous
            response = await asyncio.to_thread(self._client.send, mail)
        except Exception as e:
            logger.error("SendGrid send failed", to_email=message.to_email, error=str(e))
            raise MailError(f"SendGrid send failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(
                "SendGrid rejected message",
                to_email=message.to_email,
                status_code=response.status_code,
            )
            raise MailError("SendGrid rejected message", status_code=response.status_code)

        return response.status_code


class LoggingMailClient:
    async def send(self, message: EmailMessage) -> int:
        logger.info(
            "Email not sent (logging mail client)",
            to_email=message.to_email,
            from_email=message.from_email,
            subject=message.subject,
        )
        return ACCEPTED_STATUS
