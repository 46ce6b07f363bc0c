"""Views for the registration app.

JSON endpoints for starting a checkout, listing the caller's registrations,
and the on-demand ticket actions: send the ticket by email, download the
PDF, and resume an abandoned payment.  The Stripe webhook lives in
:mod:`concerto.registration.webhooks`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.http import HttpResponse, JsonResponse

from concerto.exceptions import ValidationFailed
from concerto.http import ApiView, read_json
from concerto.registration.forms import RegistrationCheckoutForm, normalize_keys
from concerto.registration.models import Registration
from concerto.registration.services.checkout import CheckoutService
from concerto.registration.services.reconciliation import ReconciliationService

if TYPE_CHECKING:
    from uuid import UUID

    from django.http import HttpRequest

logger = logging.getLogger(__name__)


def serialize_registration(registration: Registration) -> dict[str, Any]:
    """Return the JSON representation of a registration for its owner.

    Args:
        registration: The registration to serialize.

    Returns:
        A dict of JSON-safe values.
    """
    return {
        "id": str(registration.pk),
        "eventId": registration.event_id,
        "firstName": registration.first_name,
        "lastName": registration.last_name,
        "email": registration.email,
        "phone": registration.phone,
        "amount": str(registration.amount),
        "currency": registration.currency,
        "status": registration.status,
        "qrCodeDataUrl": registration.qr_code_data_url or None,
        "paidAt": registration.paid_at.isoformat() if registration.paid_at else None,
        "createdAt": registration.created_at.isoformat(),
    }


class RegistrationListView(ApiView):
    """Lists the authenticated user's registrations, newest first."""

    required_feature = "registration"

    def get(self, request: HttpRequest) -> JsonResponse:
        """Return ``{"registrations": [...]}``."""
        registrations = Registration.objects.owned_by(request.user).order_by("-created_at")
        return JsonResponse({"registrations": [serialize_registration(r) for r in registrations]})


class CheckoutView(ApiView):
    """Creates a pending registration and its Stripe Checkout session."""

    required_feature = "registration"
    http_method_names = ["post"]

    def post(self, request: HttpRequest) -> JsonResponse:
        """Validate the participant details and open a Checkout session.

        Returns:
            201 with ``{"sessionId", "sessionUrl", "registration"}``.

        Raises:
            ValidationFailed: If the submitted details are invalid.
        """
        form = RegistrationCheckoutForm(normalize_keys(read_json(request)))
        if not form.is_valid():
            raise ValidationFailed(errors={field: list(errors) for field, errors in form.errors.items()})

        registration, redirect = CheckoutService.start_checkout(request.user, **form.cleaned_data)
        return JsonResponse(
            {
                "sessionId": redirect.session_id,
                "sessionUrl": redirect.url,
                "registration": serialize_registration(registration),
            },
            status=201,
        )


class SendTicketView(ApiView):
    """Emails the ticket now, confirming the payment with Stripe if needed.

    The response tells the caller whether the email actually went out so the
    UI can fall back to the download action.
    """

    required_feature = "registration"
    http_method_names = ["post"]

    def post(self, request: HttpRequest, pk: UUID) -> JsonResponse:
        """Return ``{"sent": bool, "codeReady": bool}``."""
        delivery = ReconciliationService.send_ticket(pk, request.user)
        return JsonResponse({"sent": delivery.sent, "codeReady": delivery.code_ready})


class TicketDownloadView(ApiView):
    """Returns the PDF ticket as an attachment."""

    required_feature = "registration"
    http_method_names = ["get"]

    def get(self, request: HttpRequest, pk: UUID) -> HttpResponse:
        """Render the ticket, confirming the payment with Stripe if needed."""
        ticket = ReconciliationService.build_ticket_file(pk, request.user)
        response = HttpResponse(ticket.content, content_type="application/pdf")
        response["Content-Disposition"] = f'attachment; filename="{ticket.filename}"'
        response["Cache-Control"] = "no-store"
        return response


class ResumeCheckoutView(ApiView):
    """Opens a fresh Checkout session for a pending registration."""

    required_feature = "registration"
    http_method_names = ["post"]

    def post(self, request: HttpRequest, pk: UUID) -> JsonResponse:
        """Return ``{"sessionId", "sessionUrl"}`` for the new session."""
        redirect = ReconciliationService.resume_checkout(pk, request.user)
        return JsonResponse({"sessionId": redirect.session_id, "sessionUrl": redirect.url})
