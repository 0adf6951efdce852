"""Claim Resolution Engine - Notification Cascade

Email senders, message templates, and the dispatcher that records
every attempt in the notification audit trail.
"""
from .email_service import (
    EmailAttachment,
    EmailMessage,
    EmailService,
    SendGridEmailService,
    LoggingEmailService,
    get_email_service,
)
from .templates import owner_approval_email, legal_partner_email, pm_confirmation_email
from .dispatcher import NotificationDispatcher

__all__ = [
    "EmailAttachment",
    "EmailMessage",
    "EmailService",
    "SendGridEmailService",
    "LoggingEmailService",
    "get_email_service",
    "owner_approval_email",
    "legal_partner_email",
    "pm_confirmation_email",
    "NotificationDispatcher",
]
