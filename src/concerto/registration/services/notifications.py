"""Ticket email delivery through Resend.

:func:`send_ticket_email` raises on any failure; :func:`dispatch_ticket` is
the best-effort wrapper used by the reconciliation flows, where a delivery
problem must never undo or block a confirmed payment.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

import resend
from django.core.exceptions import ImproperlyConfigured
from django.template.loader import render_to_string

from concerto.registration.services.documents import format_amount
from concerto.settings import get_config, require_settings

if TYPE_CHECKING:
    from concerto.registration.services.documents import TicketDetails

logger = logging.getLogger(__name__)

EMAIL_SETTINGS = ("email.api_key", "email.from_email")


def ticket_filename(registration_id: str) -> str:
    """Return the attachment/download filename for a registration's ticket."""
    return f"{get_config().ticket_filename_prefix}-{registration_id}.pdf"


def send_ticket_email(to: str, details: TicketDetails, ticket_pdf: bytes) -> str | None:
    """Send the ticket email with the PDF attached.

    The HTML body embeds the verification code image inline; the PDF ticket
    is attached as ``<prefix>-<registration id>.pdf``.

    Args:
        to: Recipient address.
        details: Ticket contents, also used to render the message body.
        ticket_pdf: The rendered PDF ticket.

    Returns:
        The Resend message id, when the API returns one.

    Raises:
        ImproperlyConfigured: If the email API key or sender is missing.
        ValueError: If *to* is empty.
        resend.exceptions.ResendError: If the provider rejects the message.
    """
    config = require_settings(*EMAIL_SETTINGS)
    if not to:
        msg = "Cannot send a ticket email without a recipient"
        raise ValueError(msg)

    context = {
        "details": details,
        "event": config.event,
        "amount": format_amount(details.amount, details.currency),
    }
    subject = " ".join(render_to_string("concerto/registration/ticket_email_subject.txt", context).split())

    params: dict[str, Any] = {
        "from": config.email.from_email,
        "to": [to],
        "subject": subject,
        "html": render_to_string("concerto/registration/ticket_email.html", context),
        "text": render_to_string("concerto/registration/ticket_email.txt", context),
        "attachments": [
            {
                "filename": ticket_filename(details.registration_id),
                "content": base64.b64encode(ticket_pdf).decode("ascii"),
                "content_type": "application/pdf",
            },
        ],
    }
    if config.email.reply_to:
        params["reply_to"] = config.email.reply_to

    resend.api_key = config.email.api_key
    response = resend.Emails.send(params)
    message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
    logger.info("Ticket email for registration %s sent (message %s)", details.registration_id, message_id)
    return message_id


def dispatch_ticket(to: str, details: TicketDetails, ticket_pdf: bytes) -> bool:
    """Send the ticket email, reporting failure instead of raising.

    Missing email configuration is not a delivery failure and still raises,
    so that it surfaces as a configuration error.

    Returns:
        ``True`` if the provider accepted the message, ``False`` otherwise.
    """
    try:
        send_ticket_email(to, details, ticket_pdf)
    except ImproperlyConfigured:
        raise
    except Exception:
        logger.exception("Failed to send ticket email for registration %s", details.registration_id)
        return False
    return True
