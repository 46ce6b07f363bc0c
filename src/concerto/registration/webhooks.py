"""Stripe webhook handling for the registration app.

Provides a registry-based dispatch system for processing Stripe webhook events.
Each event kind (e.g. ``checkout.session.completed``) maps to a handler class
that encapsulates idempotent processing, signal dispatch, and error capture.

The ``stripe_webhook`` view verifies event signatures, deduplicates by Stripe
event ID, and delegates to the appropriate handler.

Usage in URL configuration::

    from concerto.registration.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook),
    ]
"""

from __future__ import annotations

import json
import logging
import traceback
from typing import TYPE_CHECKING

import stripe
from django.core.exceptions import ImproperlyConfigured
from django.db import IntegrityError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from concerto.http import GENERIC_ERROR_MESSAGE, error_response
from concerto.registration.models import EventProcessingException, StripeEvent
from concerto.registration.services.notifications import EMAIL_SETTINGS
from concerto.registration.services.reconciliation import ReconciliationService
from concerto.registration.signals import checkout_completed
from concerto.registration.stripe_utils import expandable_id, metadata_value
from concerto.settings import require_settings

if TYPE_CHECKING:
    from django.http import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

WEBHOOK_SETTINGS = ("stripe.secret_key", "stripe.webhook_secret", "site_url", *EMAIL_SETTINGS)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class WebhookRegistry:
    """Registry mapping Stripe event kinds to handler classes.

    Handlers are registered at module load time and looked up by the webhook
    view when an event arrives.
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._registry: dict[str, type[Webhook]] = {}

    def register(self, kind: str, handler_class: type[Webhook]) -> None:
        """Register a handler class for a Stripe event kind.

        Args:
            kind: The Stripe event type string (e.g. ``"checkout.session.completed"``).
            handler_class: A ``Webhook`` subclass that handles this event kind.
        """
        self._registry[kind] = handler_class

    def get(self, kind: str) -> type[Webhook] | None:
        """Return the handler class for a given event kind, or ``None``."""
        return self._registry.get(kind)

    def keys(self) -> list[str]:
        """Return all registered event kinds."""
        return list(self._registry.keys())


registry = WebhookRegistry()


# ---------------------------------------------------------------------------
# Base handler
# ---------------------------------------------------------------------------


class Webhook:
    """Abstract base class for Stripe webhook event handlers.

    Subclasses must set ``name`` to the Stripe event kind they handle and
    implement ``process_webhook()`` with the actual business logic. The base
    ``process()`` method wraps execution in idempotency checks and exception
    capture.

    Attributes:
        name: The Stripe event kind this handler processes.
        event: The ``StripeEvent`` model instance being handled.
    """

    name: str = ""

    def __init__(self, event: StripeEvent) -> None:
        """Bind the handler to a specific Stripe event record.

        Args:
            event: The persisted ``StripeEvent`` to process.
        """
        self.event = event

    def process(self) -> None:
        """Run the handler with idempotency and error capture.

        Skips events that have already been processed. On success, marks the
        event as processed and fires any associated Django signal. On failure,
        captures the traceback to ``EventProcessingException`` and re-raises;
        the event stays unprocessed so a redelivery runs it again.
        """
        if self.event.processed:
            logger.info("Event %s already processed, skipping", self.event.stripe_id)
            return

        try:
            self.process_webhook()
            self.send_signal()
            self.event.processed = True
            self.event.save(update_fields=["processed"])
        except Exception:
            self.log_exception()
            raise

    def process_webhook(self) -> None:
        """Implement event-specific processing logic.

        Raises:
            NotImplementedError: Subclasses must override this method.
        """
        raise NotImplementedError

    def send_signal(self) -> None:
        """Send a Django signal after successful processing.

        The default implementation is a no-op.
        """

    def log_exception(self) -> None:
        """Capture the current exception to ``EventProcessingException``."""
        tb = traceback.format_exc()
        logger.error(
            "Error processing webhook %s (event %s): %s",
            self.name,
            self.event.stripe_id,
            tb,
        )
        EventProcessingException.objects.create(
            event=self.event,
            data=json.dumps(self.event.payload, default=str),
            message=tb.strip().splitlines()[-1][:500] if tb.strip() else "Unknown error",
            traceback=tb,
        )


def _event_data_object(event: StripeEvent) -> dict[str, object]:
    """Extract the ``data.object`` dict from a StripeEvent payload."""
    return _payload_data_object(event.payload)


def _payload_data_object(payload: object) -> dict[str, object]:
    """Extract ``data.object`` from a raw event payload, or an empty dict."""
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            obj = data.get("object")
            if isinstance(obj, dict):
                return obj
    return {}


# ---------------------------------------------------------------------------
# Concrete handlers
# ---------------------------------------------------------------------------


class CheckoutSessionCompletedWebhook(Webhook):
    """Handles ``checkout.session.completed`` events.

    Sessions whose metadata names a ``registration_id`` confirm that
    registration.  Any other session is offered to other apps through the
    ``checkout_completed`` signal and otherwise ignored.
    """

    name = "checkout.session.completed"

    def process_webhook(self) -> None:
        """Confirm the registration referenced by the session metadata."""
        session = _event_data_object(self.event)
        registration_id = metadata_value(session.get("metadata"), "registration_id")
        if registration_id is None:
            logger.info("Checkout session %s carries no registration_id", session.get("id"))
            return
        ReconciliationService.handle_checkout_completed(registration_id, session)

    def send_signal(self) -> None:
        """Offer sessions without a registration to other listeners."""
        session = _event_data_object(self.event)
        metadata = session.get("metadata")
        if metadata_value(metadata, "registration_id") is not None:
            return
        checkout_completed.send(
            sender=type(self),
            session=session,
            metadata=metadata if isinstance(metadata, dict) else {},
        )


class CheckoutSessionAsyncPaymentSucceededWebhook(CheckoutSessionCompletedWebhook):
    """Handles ``checkout.session.async_payment_succeeded`` events.

    Delayed payment methods complete the session while still unpaid and
    settle later; the settled session is processed like a completed one.
    """

    name = "checkout.session.async_payment_succeeded"


# ---------------------------------------------------------------------------
# Handler registration
# ---------------------------------------------------------------------------

registry.register("checkout.session.completed", CheckoutSessionCompletedWebhook)
registry.register("checkout.session.async_payment_succeeded", CheckoutSessionAsyncPaymentSucceededWebhook)


# ---------------------------------------------------------------------------
# Webhook endpoint view
# ---------------------------------------------------------------------------


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """Receive and process Stripe webhook events.

    Verifies the event signature against the configured webhook secret,
    deduplicates by Stripe event ID, persists the raw event, and dispatches
    to the registered handler.

    Once the signature is verified the view always answers 200
    ``{"received": true}``, even when processing fails, so that Stripe does
    not redeliver an event this system cannot act on. Errors are logged and
    captured to ``EventProcessingException``.

    Args:
        request: The incoming HTTP request from Stripe.

    Returns:
        200 on receipt, 400 for a missing or invalid signature, 500 when
        the required settings are missing.
    """
    try:
        config = require_settings(*WEBHOOK_SETTINGS)
    except ImproperlyConfigured:
        logger.exception("Stripe webhook received but concerto is not fully configured")
        return error_response(GENERIC_ERROR_MESSAGE, status=500)

    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    if not sig_header:
        logger.warning("Stripe webhook received without a signature header")
        return error_response("Missing Stripe signature.", status=400)

    try:
        event = stripe.Webhook.construct_event(
            request.body,
            sig_header,
            str(config.stripe.webhook_secret),
            tolerance=config.stripe.webhook_tolerance,
        )
    except (stripe.SignatureVerificationError, ValueError):
        logger.warning("Invalid Stripe webhook payload or signature")
        return error_response("Invalid Stripe signature.", status=400)

    try:
        _record_and_dispatch(request.body, event)
    except Exception:
        logger.exception("Error processing Stripe event %s", event.get("id"))

    return JsonResponse({"received": True})


def _record_and_dispatch(body: bytes, event: stripe.Event | dict[str, object]) -> None:
    """Persist the event once and run its handler unless already processed.

    Args:
        body: The raw, signature-verified request body.
        event: The event returned by signature verification.
    """
    stripe_id = str(event["id"])
    kind = str(event["type"])
    payload = json.loads(body)

    try:
        stripe_event, created = StripeEvent.objects.get_or_create(
            stripe_id=stripe_id,
            defaults={
                "kind": kind,
                "livemode": bool(payload.get("livemode", False)),
                "payload": payload,
                "customer_id": expandable_id(_payload_data_object(payload).get("customer")) or "",
                "api_version": payload.get("api_version") or "",
            },
        )
    except IntegrityError:
        logger.info("Stripe event %s recorded concurrently, returning 200", stripe_id)
        return

    if not created and stripe_event.processed:
        logger.info("Duplicate Stripe event %s, returning 200", stripe_id)
        return

    handler_class = registry.get(kind)
    if handler_class is None:
        logger.info("No handler registered for event kind '%s'", kind)
        return

    handler_class(stripe_event).process()
