"""Stripe client wrapper for Checkout operations.

Uses the modern ``stripe.StripeClient`` pattern (v1 namespace) bound to the
configured secret key and API version.  Only the two calls the ticketing flow
needs are exposed: creating a one-time-payment Checkout session and
retrieving one by id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import stripe

from concerto.registration.stripe_utils import convert_amount_for_api, obfuscate_key
from concerto.settings import get_config

if TYPE_CHECKING:
    from decimal import Decimal

logger = logging.getLogger(__name__)


class StripeClient:
    """Stripe Checkout API client.

    Wraps ``stripe.StripeClient`` (v1 namespace) and binds every call to the
    configured secret key and API version.

    Args:
        secret_key: Optional explicit key; defaults to
            ``CONCERTO['stripe']['secret_key']``.

    Raises:
        ValueError: If no Stripe secret key is configured.
    """

    def __init__(self, secret_key: str | None = None) -> None:
        """Initialize the client with the Stripe credentials.

        Args:
            secret_key: Optional explicit key overriding the configured one.

        Raises:
            ValueError: If no Stripe secret key is available.
        """
        config = get_config()
        key = secret_key or config.stripe.secret_key
        if not key:
            msg = (
                "No Stripe secret key configured. "
                "Set CONCERTO['stripe']['secret_key'] before initializing StripeClient."
            )
            raise ValueError(msg)

        self.client = stripe.StripeClient(
            str(key),
            stripe_version=config.stripe.api_version,
        )
        logger.debug(
            "Initialized StripeClient for key %s (api_version=%s)",
            obfuscate_key(str(key)),
            config.stripe.api_version,
        )

    def create_checkout_session(  # noqa: PLR0913
        self,
        *,
        amount: Decimal,
        currency: str,
        product_name: str,
        product_description: str,
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: str | None = None,
    ) -> stripe.checkout.Session:
        """Create a one-time-payment Checkout session with a single line item.

        The same ``metadata`` is set on the session and on the underlying
        PaymentIntent so either object can be traced back to its origin.

        Args:
            amount: Charge amount in major currency units.
            currency: ISO 4217 code.
            product_name: Line item name shown on the Checkout page.
            product_description: Line item description.
            customer_email: Pre-filled payer email.
            metadata: String metadata (e.g. ``registration_id``).
            success_url: Redirect target after payment.
            cancel_url: Redirect target when the payer abandons.
            idempotency_key: Optional Stripe idempotency key.

        Returns:
            The created ``stripe.checkout.Session``.
        """
        params: dict[str, object] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": convert_amount_for_api(amount, currency),
                        "product_data": {
                            "name": product_name,
                            "description": product_description,
                        },
                    },
                },
            ],
            "payment_intent_data": {"metadata": metadata},
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        options: dict[str, object] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        session = self.client.v1.checkout.sessions.create(params=params, options=options)
        logger.info("Created Stripe checkout session %s", session.id)
        return session

    def retrieve_checkout_session(self, session_id: str) -> stripe.checkout.Session:
        """Fetch a Checkout session by id.

        Args:
            session_id: The ``cs_...`` identifier.

        Returns:
            The ``stripe.checkout.Session`` including ``payment_status`` and
            ``payment_intent``.
        """
        return self.client.v1.checkout.sessions.retrieve(session_id)
