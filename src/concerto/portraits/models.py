"""Portrait project models for concerto."""

import uuid

from django.conf import settings
from django.db import models


class Project(models.Model):
    """A user's portrait: an uploaded photo and, once paid for, its AI rendition.

    ``payment_status`` flips to PAID when the Stripe Checkout session opened
    for the project completes.  Generation moves ``status`` from PENDING to
    PROCESSING and then COMPLETED; a failed generation goes back to PENDING
    so it can be retried.
    """

    class Status(models.TextChoices):
        """Generation lifecycle."""

        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"

    class PaymentStatus(models.TextChoices):
        """Whether the generation has been paid for."""

        UNPAID = "unpaid", "Unpaid"
        PAID = "paid", "Paid"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="portrait_projects",
    )
    input_image = models.FileField(upload_to="portraits/inputs/")
    output_image = models.FileField(upload_to="portraits/outputs/", blank=True, default="")
    prompt = models.TextField(blank=True, default="")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )
    stripe_checkout_session_id = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Project {self.pk} ({self.status}, {self.payment_status})"
