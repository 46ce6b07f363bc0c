"""Payment reconciliation and ticket issuance.

Two independent triggers confirm a registration: the Stripe
``checkout.session.completed`` webhook and on-demand user actions (send my
ticket, download my ticket).  Both converge on :func:`mark_registration_paid`,
a conditional ``UPDATE ... WHERE status = 'pending'`` whose affected-row count
decides which caller performed the transition.  Only that caller fires
``registration_paid`` and, on the webhook path, emails the ticket; every other
caller treats the registration as already handled.

Status moves ``pending -> paid`` or ``pending -> cancelled`` and never leaves
``paid`` or ``cancelled``.  A verification code, once stored, is reused for
every later render so that retried emails always carry the same code.
Email delivery is best-effort and never undoes a confirmed payment.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import stripe
from django.core.exceptions import ValidationError
from django.utils import timezone

from concerto.exceptions import (
    AlreadyConfirmed,
    MissingCheckoutSession,
    MissingContactEmail,
    PaymentGatewayError,
    PaymentNotConfirmed,
    RegistrationCancelled,
    RegistrationForbidden,
    RegistrationNotFound,
)
from concerto.registration.models import Registration
from concerto.registration.services.checkout import (
    CHECKOUT_SETTINGS,
    CheckoutRedirect,
    open_checkout_session,
    validate_amount,
)
from concerto.registration.services.documents import TicketDetails, render_ticket_pdf
from concerto.registration.services.notifications import EMAIL_SETTINGS, dispatch_ticket, ticket_filename
from concerto.registration.services.verification import build_checkin_url, generate_verification_code
from concerto.registration.signals import registration_paid
from concerto.registration.stripe_client import StripeClient
from concerto.registration.stripe_utils import convert_amount_for_db, expandable_id
from concerto.settings import require_settings

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser, AnonymousUser

logger = logging.getLogger(__name__)

# Checkout session payment statuses that mean the money was collected.
SETTLED_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


@dataclass(frozen=True, slots=True)
class TicketDelivery:
    """Outcome of an on-demand ticket send."""

    sent: bool
    code_ready: bool


@dataclass(frozen=True, slots=True)
class TicketFile:
    """A rendered ticket ready to be downloaded."""

    filename: str
    content: bytes


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def get_owned_registration(registration_id: object, user: AbstractBaseUser | AnonymousUser) -> Registration:
    """Load a registration and check that *user* owns it.

    The row is loaded without ownership scoping so that an unknown id and
    somebody else's registration can be told apart.

    Args:
        registration_id: The registration primary key.
        user: The authenticated actor.

    Returns:
        The registration.

    Raises:
        RegistrationNotFound: If no registration has this id.
        RegistrationForbidden: If the registration belongs to another user.
    """
    try:
        registration = Registration.objects.get(pk=registration_id)
    except (Registration.DoesNotExist, ValidationError, ValueError) as exc:
        raise RegistrationNotFound from exc
    if not user.is_authenticated or registration.user_id != user.pk:
        logger.warning("User %s denied access to registration %s", user.pk, registration.pk)
        raise RegistrationForbidden
    return registration


def mark_registration_paid(
    registration: Registration,
    *,
    session_id: str | None,
    payment_intent_id: str | None,
    source: str,
) -> bool:
    """Transition *registration* from PENDING to PAID if nobody else has.

    The update is conditional on the row still being PENDING, so concurrent
    callers cannot both win.  *registration* is refreshed from the database
    in every case.

    Args:
        registration: The registration to confirm.
        session_id: The Checkout session that was paid; kept unchanged when ``None``.
        payment_intent_id: The PaymentIntent that settled the session; the
            previously stored value is kept when ``None``.
        source: ``"webhook"`` or ``"on_demand"``, forwarded to the signal.

    Returns:
        ``True`` if this call performed the transition, ``False`` if the
        registration was no longer pending.
    """
    now = timezone.now()
    fields: dict[str, object] = {
        "status": Registration.Status.PAID,
        "paid_at": now,
        "updated_at": now,
    }
    if session_id:
        fields["stripe_checkout_session_id"] = session_id
    if payment_intent_id:
        fields["stripe_payment_intent_id"] = payment_intent_id

    updated = Registration.objects.filter(pk=registration.pk, status=Registration.Status.PENDING).update(**fields)
    registration.refresh_from_db()

    if updated != 1:
        logger.info(
            "Registration %s not transitioned by %s: already %s",
            registration.pk,
            source,
            registration.status,
        )
        return False

    if not registration.stripe_payment_intent_id:
        logger.warning("Registration %s marked PAID without a payment intent reference", registration.pk)
    logger.info(
        "Registration %s marked PAID via %s (payment_intent %s)",
        registration.pk,
        source,
        registration.stripe_payment_intent_id,
    )
    registration_paid.send(sender=Registration, registration=registration, source=source)
    return True


def ensure_verification_code(registration: Registration) -> str:
    """Return the registration's verification code, generating it once.

    A freshly generated code is only written if the row still has none;
    when another request stored one first, that persisted code is returned
    and the local one is discarded.

    Args:
        registration: A paid registration. Refreshed in place when a code
            is generated.

    Returns:
        The persisted ``data:`` URL.
    """
    if registration.qr_code_data_url:
        return registration.qr_code_data_url

    code = generate_verification_code(build_checkin_url(registration.pk))
    Registration.objects.filter(pk=registration.pk, qr_code_data_url="").update(
        qr_code_data_url=code,
        updated_at=timezone.now(),
    )
    registration.refresh_from_db(fields=["qr_code_data_url", "updated_at"])
    if registration.qr_code_data_url != code:
        logger.info("Registration %s already had a verification code, reusing it", registration.pk)
    return registration.qr_code_data_url


def render_ticket(registration: Registration) -> tuple[TicketDetails, bytes]:
    """Ensure the code exists and render the ticket PDF for *registration*.

    Returns:
        The ticket details and the PDF bytes.
    """
    ensure_verification_code(registration)
    details = TicketDetails.from_registration(registration)
    return details, render_ticket_pdf(details)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


class ReconciliationService:
    """Stateless service aligning registrations with Stripe's payment status."""

    @staticmethod
    def handle_checkout_completed(registration_id: str, session: Mapping[str, object]) -> bool:
        """Confirm a registration from a ``checkout.session.completed`` webhook.

        Unknown registrations and sessions that are not settled are logged
        and ignored.  Only the caller that wins the PENDING to PAID transition
        generates the code and emails the ticket; email failures are logged.

        Args:
            registration_id: The ``registration_id`` from the session metadata.
            session: The Checkout session object from the event payload.

        Returns:
            ``True`` if this delivery confirmed the registration.
        """
        try:
            registration = Registration.objects.get(pk=registration_id)
        except (Registration.DoesNotExist, ValidationError, ValueError):
            logger.warning("Checkout completed for unknown registration %s, ignoring", registration_id)
            return False

        payment_status = session.get("payment_status")
        if payment_status is not None and payment_status not in SETTLED_PAYMENT_STATUSES:
            logger.info(
                "Checkout session %s for registration %s not settled (%s), ignoring",
                session.get("id"),
                registration.pk,
                payment_status,
            )
            return False

        amount_total = session.get("amount_total")
        settled = convert_amount_for_db(amount_total, registration.currency) if isinstance(amount_total, int) else None
        if settled is not None and settled != registration.amount:
            logger.warning(
                "Checkout session %s settled %s %s for registration %s expecting %s",
                session.get("id"),
                amount_total,
                registration.currency,
                registration.pk,
                registration.amount,
            )

        session_id = session.get("id")
        won = mark_registration_paid(
            registration,
            session_id=session_id if isinstance(session_id, str) else None,
            payment_intent_id=expandable_id(session.get("payment_intent")),
            source="webhook",
        )
        if not won:
            if registration.status == Registration.Status.CANCELLED:
                logger.warning(
                    "Payment completed for cancelled registration %s (session %s)",
                    registration.pk,
                    session_id,
                )
            return False

        if not registration.email:
            ensure_verification_code(registration)
            logger.warning("Registration %s has no email address, ticket not sent", registration.pk)
            return True

        try:
            details, pdf = render_ticket(registration)
        except Exception:
            logger.exception("Could not render the ticket for registration %s", registration.pk)
            return True
        dispatch_ticket(registration.email, details, pdf)
        return True

    @staticmethod
    def confirm_payment(registration: Registration) -> Registration:
        """Make sure *registration* is PAID, asking Stripe when it is pending.

        Args:
            registration: The registration to confirm.

        Returns:
            The (refreshed) registration, now PAID.

        Raises:
            RegistrationCancelled: If the registration is cancelled.
            MissingCheckoutSession: If a pending registration has no session.
            PaymentGatewayError: If Stripe cannot be queried.
            PaymentNotConfirmed: If Stripe does not report the session as settled.
        """
        if registration.status == Registration.Status.PAID:
            return registration
        if registration.status == Registration.Status.CANCELLED:
            raise RegistrationCancelled
        if not registration.stripe_checkout_session_id:
            raise MissingCheckoutSession

        require_settings("stripe.secret_key")
        client = StripeClient()
        try:
            session = client.retrieve_checkout_session(registration.stripe_checkout_session_id)
        except stripe.StripeError as exc:
            logger.exception(
                "Could not retrieve checkout session %s for registration %s",
                registration.stripe_checkout_session_id,
                registration.pk,
            )
            raise PaymentGatewayError from exc

        if session.payment_status not in SETTLED_PAYMENT_STATUSES:
            logger.info(
                "Checkout session %s for registration %s is %s",
                session.id,
                registration.pk,
                session.payment_status,
            )
            raise PaymentNotConfirmed

        mark_registration_paid(
            registration,
            session_id=session.id,
            payment_intent_id=expandable_id(session.payment_intent),
            source="on_demand",
        )
        if registration.status != Registration.Status.PAID:
            logger.warning("Payment confirmed for cancelled registration %s", registration.pk)
            raise RegistrationCancelled
        return registration

    @staticmethod
    def send_ticket(registration_id: object, user: AbstractBaseUser | AnonymousUser) -> TicketDelivery:
        """Confirm if needed, then email the ticket to the registration's address.

        Args:
            registration_id: The registration primary key.
            user: The authenticated actor; must own the registration.

        Returns:
            Whether the email was accepted and whether a code is stored. A
            delivery failure is reported as ``sent=False``, not raised.

        Raises:
            ImproperlyConfigured: If email or site settings are missing.
            RegistrationNotFound: Unknown id.
            RegistrationForbidden: Not the owner.
            MissingContactEmail: The registration has no email address.
        """
        require_settings(*EMAIL_SETTINGS, "site_url")
        registration = get_owned_registration(registration_id, user)
        if not registration.email:
            raise MissingContactEmail

        registration = ReconciliationService.confirm_payment(registration)
        details, pdf = render_ticket(registration)
        sent = dispatch_ticket(registration.email, details, pdf)
        return TicketDelivery(sent=sent, code_ready=bool(registration.qr_code_data_url))

    @staticmethod
    def build_ticket_file(registration_id: object, user: AbstractBaseUser | AnonymousUser) -> TicketFile:
        """Confirm if needed, then render the ticket for download.

        Raises:
            RegistrationNotFound: Unknown id.
            RegistrationForbidden: Not the owner.
            StateConflictError: See :meth:`confirm_payment`.
        """
        require_settings("site_url")
        registration = get_owned_registration(registration_id, user)
        registration = ReconciliationService.confirm_payment(registration)
        details, pdf = render_ticket(registration)
        return TicketFile(filename=ticket_filename(details.registration_id), content=pdf)

    @staticmethod
    def resume_checkout(registration_id: object, user: AbstractBaseUser | AnonymousUser) -> CheckoutRedirect:
        """Open a fresh Checkout session for an abandoned pending registration.

        The new session replaces the stored one and any previous payment
        intent reference is cleared; the status stays PENDING.

        Args:
            registration_id: The registration primary key.
            user: The authenticated actor; must own the registration.

        Returns:
            The new session id and Checkout URL.

        Raises:
            RegistrationNotFound: Unknown id.
            RegistrationForbidden: Not the owner.
            AlreadyConfirmed: The registration is already paid.
            RegistrationCancelled: The registration is cancelled.
            InvalidAmount: The stored amount is under the current minimum.
            PaymentGatewayError: Stripe refused the session.
        """
        registration = get_owned_registration(registration_id, user)
        if registration.status == Registration.Status.PAID:
            raise AlreadyConfirmed
        if registration.status == Registration.Status.CANCELLED:
            raise RegistrationCancelled("A cancelled registration cannot be resumed.")

        require_settings(*CHECKOUT_SETTINGS)
        validate_amount(registration.amount)
        redirect = open_checkout_session(StripeClient(), registration)

        updated = Registration.objects.filter(pk=registration.pk, status=Registration.Status.PENDING).update(
            stripe_checkout_session_id=redirect.session_id,
            stripe_payment_intent_id="",
            updated_at=timezone.now(),
        )
        if updated != 1:
            registration.refresh_from_db()
            if registration.status == Registration.Status.PAID:
                raise AlreadyConfirmed
            raise RegistrationCancelled("A cancelled registration cannot be resumed.")

        logger.info("Registration %s resumed with checkout session %s", registration.pk, redirect.session_id)
        return redirect

    @staticmethod
    def cancel_registration(registration: Registration) -> bool:
        """Cancel a registration that is still pending.

        Returns:
            ``True`` if the registration was cancelled by this call.
        """
        updated = Registration.objects.filter(pk=registration.pk, status=Registration.Status.PENDING).update(
            status=Registration.Status.CANCELLED,
            updated_at=timezone.now(),
        )
        registration.refresh_from_db()
        if updated == 1:
            logger.info("Registration %s cancelled", registration.pk)
        return updated == 1
