"""Checkout initiation for registrations.

Creates the provisional PENDING registration, opens a Stripe Checkout
session for it and records the session reference.  If anything fails after
the row was inserted, the row is deleted again so that no orphan pending
registration without a session survives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import stripe

from concerto.exceptions import InvalidAmount, PaymentGatewayError
from concerto.registration.models import Registration
from concerto.registration.stripe_client import StripeClient
from concerto.settings import get_config, require_settings

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from concerto.portraits.models import Project

logger = logging.getLogger(__name__)

CHECKOUT_SETTINGS = ("stripe.secret_key", "site_url")


@dataclass(frozen=True, slots=True)
class CheckoutRedirect:
    """Where to send the payer to complete a Checkout session."""

    session_id: str
    url: str | None


def validate_amount(raw: object) -> Decimal:
    """Parse and validate a registration amount.

    Args:
        raw: The submitted amount (``Decimal``, ``int``, ``float`` or string).

    Returns:
        The amount rounded to cents.

    Raises:
        InvalidAmount: If the amount is not a finite positive number or is
            below ``CONCERTO['minimum_amount']``.
    """
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount("The amount must be a positive number.")

    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    config = get_config()
    if amount < config.minimum_amount:
        raise InvalidAmount(f"The minimum amount is {config.minimum_amount} {config.currency}.")
    return amount


def dashboard_url(**params: object) -> str:
    """Return the absolute dashboard URL with *params* as the query string."""
    config = require_settings("site_url")
    base = f"{str(config.site_url).rstrip('/')}{config.dashboard_path}"
    query = urlencode({key: str(value) for key, value in params.items()})
    return f"{base}?{query}" if query else base


def return_urls(registration_id: object) -> tuple[str, str]:
    """Build the Checkout success and cancel redirect URLs for a registration.

    Returns:
        A ``(success_url, cancel_url)`` tuple pointing at the dashboard.
    """
    return (
        dashboard_url(status="confirmed", registration=registration_id),
        dashboard_url(status="cancelled", registration=registration_id),
    )


def checkout_idempotency_key(prefix: str, obj: Registration | Project) -> str:
    """Return the Stripe idempotency key for opening a session for *obj*.

    The key changes whenever the row is saved, so a retried request reuses
    the session it already created while a later resume opens a new one.
    """
    return f"{prefix}-{obj.pk}-{int(obj.updated_at.timestamp() * 1_000_000)}"


def open_checkout_session(client: StripeClient, registration: Registration) -> CheckoutRedirect:
    """Create a Checkout session paying for *registration*.

    Args:
        client: An initialized :class:`StripeClient`.
        registration: The pending registration being paid for.

    Returns:
        The new session id and hosted Checkout URL.

    Raises:
        PaymentGatewayError: If Stripe rejects or cannot process the request.
    """
    event = get_config().event
    success_url, cancel_url = return_urls(registration.pk)
    try:
        session = client.create_checkout_session(
            amount=registration.amount,
            currency=registration.currency,
            product_name=f"Participation - {event.title}",
            product_description=f"{event.venue} · {event.date_label}",
            customer_email=registration.email,
            metadata={
                "registration_id": str(registration.pk),
                "event_id": registration.event_id,
                "participant_email": registration.email,
            },
            success_url=success_url,
            cancel_url=cancel_url,
            idempotency_key=checkout_idempotency_key("registration", registration),
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe refused a checkout session for registration %s", registration.pk)
        raise PaymentGatewayError from exc
    return CheckoutRedirect(session_id=session.id, url=session.url)


class CheckoutService:
    """Stateless service starting the payment of a new registration."""

    @staticmethod
    def start_checkout(  # noqa: PLR0913
        user: AbstractBaseUser,
        *,
        first_name: str,
        last_name: str,
        email: str,
        phone: str,
        amount: Decimal,
        event_id: str | None = None,
    ) -> tuple[Registration, CheckoutRedirect]:
        """Create a pending registration and open its Checkout session.

        Configuration and amount are validated before anything is written.
        When session creation fails the provisional registration is deleted
        before the error propagates.

        Args:
            user: The owner of the new registration.
            first_name: Participant first name.
            last_name: Participant last name.
            email: Participant email (ticket recipient).
            phone: Participant phone number.
            amount: The contribution in major currency units.
            event_id: The event identifier; defaults to the configured event.

        Returns:
            The saved registration (with its session reference) and the
            Checkout redirect.

        Raises:
            ImproperlyConfigured: If Stripe or the site URL is not configured.
            InvalidAmount: If the amount is not acceptable.
            PaymentGatewayError: If Stripe fails; no registration is kept.
        """
        config = require_settings(*CHECKOUT_SETTINGS)
        amount = validate_amount(amount)
        client = StripeClient()

        registration = Registration.objects.create(
            user=user,
            event_id=event_id or config.event.id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            amount=amount,
            currency=config.currency,
        )
        try:
            redirect = open_checkout_session(client, registration)
            registration.stripe_checkout_session_id = redirect.session_id
            registration.save(update_fields=["stripe_checkout_session_id", "updated_at"])
        except Exception:
            registration.delete()
            logger.warning("Deleted provisional registration after failed checkout for user %s", user.pk)
            raise

        logger.info("Registration %s created with checkout session %s", registration.pk, redirect.session_id)
        return registration, redirect
