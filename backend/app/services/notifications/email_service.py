"""
Claim Resolution Engine - Email Sender

Contract the engine needs from an email collaborator:
send(EmailMessage) either returns or raises EmailDeliveryError.
No delivery-status callbacks are assumed.

Implementations:
- SendGridEmailService: SendGrid v3 mail/send over HTTPS
- LoggingEmailService: development fallback when no API key is configured
"""
from __future__ import annotations
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from ...config import Settings, get_settings
from ..errors import EmailDeliveryError

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    text_body: str
    html_body: Optional[str] = None
    to_name: Optional[str] = None
    attachments: List[EmailAttachment] = field(default_factory=list)


class EmailService:
    """Base email sender."""

    def send(self, message: EmailMessage) -> None:
        raise NotImplementedError


class SendGridEmailService(EmailService):
    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        timeout_seconds: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def _payload(self, message: EmailMessage) -> Dict[str, Any]:
        recipient: Dict[str, str] = {"email": message.to_email}
        if message.to_name:
            recipient["name"] = message.to_name

        content = [{"type": "text/plain", "value": message.text_body}]
        if message.html_body:
            content.append({"type": "text/html", "value": message.html_body})

        payload: Dict[str, Any] = {
            "personalizations": [{"to": [recipient]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject,
            "content": content,
        }
        if message.attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "type": a.content_type,
                    "filename": a.filename,
                    "disposition": "attachment",
                }
                for a in message.attachments
            ]
        return payload

    def send(self, message: EmailMessage) -> None:
        try:
            resp = self.session.post(
                SENDGRID_SEND_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=self._payload(message),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise EmailDeliveryError(f"Failed to send email to {message.to_email}: {e}") from e

        if resp.status_code >= 400:
            raise EmailDeliveryError(
                f"Email service error {resp.status_code}",
                details={"status_code": resp.status_code, "body": resp.text[:500]},
            )
        logger.info(f"Email sent to {message.to_email}: {message.subject}")


class LoggingEmailService(EmailService):
    """Logs instead of sending. Keeps a list of sent messages for inspection."""

    def __init__(self):
        self.sent: List[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
        attachments = ", ".join(f"{a.filename} ({len(a.content)} bytes)" for a in message.attachments)
        logger.info(
            f"[email disabled] To: {message.to_email} | Subject: {message.subject}"
            + (f" | Attachments: {attachments}" if attachments else "")
        )


def get_email_service(settings: Optional[Settings] = None) -> EmailService:
    settings = settings or get_settings()
    if settings.sendgrid_api_key:
        return SendGridEmailService(
            api_key=settings.sendgrid_api_key,
            from_email=settings.sendgrid_from_email,
            from_name=settings.sendgrid_from_name,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    logger.warning("SENDGRID_API_KEY not set; emails will be logged, not sent")
    return LoggingEmailService()
