"""Registration and Stripe webhook bookkeeping models for concerto."""

import uuid
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser, AnonymousUser


class RegistrationQuerySet(models.QuerySet):
    """Query helpers for :class:`Registration`."""

    def owned_by(self, user: "AbstractBaseUser | AnonymousUser") -> "RegistrationQuerySet":
        """Restrict to the registrations belonging to *user*.

        This is the user-scoped access path; anything loaded through it is
        already known to belong to the caller.
        """
        if not user.is_authenticated:
            return self.none()
        return self.filter(user=user)

    def pending(self) -> "RegistrationQuerySet":
        """Restrict to registrations still awaiting payment."""
        return self.filter(status=Registration.Status.PENDING)


class Registration(models.Model):
    """A participant's registration for the event.

    A registration is created PENDING when the participant starts a checkout.
    It moves to PAID exactly once, either through the Stripe webhook or through
    an on-demand confirmation, and may be CANCELLED while still pending.
    PAID and CANCELLED are terminal.

    ``stripe_checkout_session_id``, ``stripe_payment_intent_id`` and
    ``qr_code_data_url`` are stored as empty strings until known.
    """

    class Status(models.TextChoices):
        """Lifecycle states for a registration."""

        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="registrations",
    )
    event_id = models.CharField(max_length=200)
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=50, blank=True, default="")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="EUR")
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    stripe_checkout_session_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Most recent Stripe Checkout session created for this registration.",
    )
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    qr_code_data_url = models.TextField(
        blank=True,
        default="",
        help_text="PNG data URL of the check-in QR code. Set once, never replaced.",
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = RegistrationQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="registration_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.status})"

    @property
    def full_name(self) -> str:
        """Return ``"First Last"`` with surrounding whitespace removed."""
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_paid(self) -> bool:
        """Return whether the registration is confirmed."""
        return self.status == self.Status.PAID


class StripeEvent(models.Model):
    """A Stripe webhook event as received, used for deduplication and audit."""

    stripe_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=255)
    livemode = models.BooleanField(default=False)
    payload = models.JSONField(default=dict)
    customer_id = models.CharField(max_length=255, blank=True, default="")
    api_version = models.CharField(max_length=64, blank=True, default="")
    processed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} ({self.stripe_id})"


class EventProcessingException(models.Model):
    """A failure captured while processing a Stripe webhook event."""

    event = models.ForeignKey(
        StripeEvent,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="exceptions",
    )
    data = models.TextField(blank=True, default="")
    message = models.CharField(max_length=500)
    traceback = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.message
