"""Signal handlers for the portraits app."""

import logging

from django.core.exceptions import ValidationError
from django.dispatch import receiver

from concerto.portraits.models import Project
from concerto.registration.signals import checkout_completed
from concerto.registration.stripe_utils import metadata_value

logger = logging.getLogger(__name__)


@receiver(checkout_completed, dispatch_uid="concerto.portraits.mark_project_paid")
def mark_project_paid(sender: object, session: dict[str, object], metadata: dict[str, object], **kwargs: object) -> None:  # noqa: ARG001
    """Mark the portrait project named in a completed session as paid.

    Only sessions carrying a ``project_id`` and a settled ``paid`` payment
    status count.  The update is conditional on the project still being
    unpaid, so redelivered events change nothing.
    """
    project_id = metadata_value(metadata, "project_id")
    if project_id is None:
        return
    if session.get("payment_status") != "paid":
        logger.info("Checkout session %s for project %s is not paid yet", session.get("id"), project_id)
        return

    try:
        updated = Project.objects.filter(pk=project_id, payment_status=Project.PaymentStatus.UNPAID).update(
            payment_status=Project.PaymentStatus.PAID,
            stripe_checkout_session_id=str(session.get("id") or ""),
        )
    except (ValidationError, ValueError):
        logger.warning("Checkout session %s names an invalid project id %r", session.get("id"), project_id)
        return

    if updated:
        logger.info("Project %s marked paid by checkout session %s", project_id, session.get("id"))
    elif not Project.objects.filter(pk=project_id).exists():
        logger.warning("Checkout session %s references unknown project %s", session.get("id"), project_id)
