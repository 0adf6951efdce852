"""
Notification email templates for the legal escalation flow.
"""
from __future__ import annotations
from datetime import datetime
from html import escape
from typing import Optional

from .email_service import EmailAttachment, EmailMessage


def owner_approval_email(
    owner_email: str,
    owner_name: str,
    property_address: str,
    approval_url: str,
    expires_at: datetime,
) -> EmailMessage:
    expires = expires_at.strftime("%A, %B %d, %Y")
    text = (
        f"Hi {owner_name},\n\n"
        f"Your property manager has reviewed the insurance claim for {property_address} and found a "
        f"potential underpayment by the carrier. They would like your approval to share the full claim "
        f"file with a legal partner who can assess your options.\n\n"
        f"Review and respond: {approval_url}\n\n"
        f"This link expires on {expires}. If you have questions, please contact your property manager directly.\n"
    )
    html = (
        f"<p>Hi {escape(owner_name)},</p>"
        f"<p>Your property manager has reviewed the insurance claim for <strong>{escape(property_address)}</strong> "
        f"and found a potential underpayment by the carrier. They would like your approval to share the full "
        f"claim file with a legal partner who can assess your options.</p>"
        f'<p><a href="{escape(approval_url)}">Review and Respond</a></p>'
        f"<p>This link expires on <strong>{expires}</strong>.</p>"
    )
    return EmailMessage(
        to_email=owner_email,
        to_name=owner_name,
        subject=f"Action Required - Review Your Claim at {property_address}",
        text_body=text,
        html_body=html,
    )


def legal_partner_email(
    partner_email: str,
    partner_name: str,
    property_address: str,
    claim_number: Optional[str],
    owner_name: str,
    package_filename: str,
    package_bytes: bytes,
    photo_count: int,
) -> EmailMessage:
    claim_label = claim_number or "N/A"
    text = (
        f"Dear {partner_name},\n\n"
        f"The property owner, {owner_name}, has authorized us to share the claim file for "
        f"{property_address} (claim {claim_label}) for your review.\n\n"
        f"Attached: {package_filename}\n"
        f"- Discrepancy report comparing the industry estimate with the carrier's offer\n"
        f"- {photo_count} contractor photo(s)\n\n"
        f"Please reply to this email with any questions about the claim.\n"
    )
    return EmailMessage(
        to_email=partner_email,
        to_name=partner_name,
        subject=f"Legal Review Request - {property_address} (Claim {claim_label})",
        text_body=text,
        attachments=[EmailAttachment(filename=package_filename, content=package_bytes, content_type="application/zip")],
    )


def pm_confirmation_email(
    pm_email: str,
    property_address: str,
    claim_number: Optional[str],
    partner_name: str,
    partner_email: str,
) -> EmailMessage:
    claim_label = claim_number or "N/A"
    text = (
        f"The property owner approved legal escalation for {property_address} (claim {claim_label}).\n\n"
        f"The legal package was sent to {partner_name} <{partner_email}>.\n"
    )
    return EmailMessage(
        to_email=pm_email,
        subject=f"Legal Package Sent - {property_address}",
        text_body=text,
    )
