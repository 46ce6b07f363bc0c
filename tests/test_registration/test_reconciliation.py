"""Tests for payment reconciliation in concerto.registration.services.reconciliation."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe as _stripe
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import override_settings

from concerto.exceptions import (
    AlreadyConfirmed,
    InvalidAmount,
    MissingCheckoutSession,
    MissingContactEmail,
    PaymentGatewayError,
    PaymentNotConfirmed,
    RegistrationCancelled,
    RegistrationForbidden,
    RegistrationNotFound,
)
from concerto.registration.models import Registration
from concerto.registration.services.reconciliation import (
    ReconciliationService,
    ensure_verification_code,
    get_owned_registration,
    mark_registration_paid,
)
from concerto.registration.services.verification import DATA_URL_PREFIX
from concerto.registration.signals import registration_paid

User = get_user_model()

STRIPE_PATH = "concerto.registration.stripe_client.stripe.StripeClient"
SEND_PATH = "concerto.registration.services.notifications.resend.Emails.send"


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def user(db):
    return User.objects.create_user(username="ada", email="ada@example.com", password="testpass123")


@pytest.fixture
def other_user(db):
    return User.objects.create_user(username="mallory", email="mallory@example.com", password="testpass123")


@pytest.fixture
def pending(user):
    return Registration.objects.create(
        user=user,
        event_id="evt-1",
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        phone="+33612345678",
        amount=Decimal("20.00"),
        stripe_checkout_session_id="cs_test_1",
    )


@pytest.fixture
def paid_signals():
    received = []

    def handler(sender, registration, source, **kwargs):
        received.append((registration.pk, source))

    registration_paid.connect(handler, weak=False)
    yield received
    registration_paid.disconnect(handler)


@pytest.fixture
def mock_send():
    with patch(SEND_PATH, return_value={"id": "msg_1"}) as mock:
        yield mock


@pytest.fixture
def mock_sessions():
    with patch(STRIPE_PATH) as mock_cls:
        sessions = mock_cls.return_value.v1.checkout.sessions
        sessions.retrieve.return_value = MagicMock(id="cs_test_1", payment_status="paid", payment_intent="pi_test_1")
        sessions.create.return_value = MagicMock(id="cs_test_2", url="https://checkout.stripe.com/c/pay/cs_test_2")
        yield sessions


def _session(**overrides):
    session = {"id": "cs_test_1", "payment_status": "paid", "payment_intent": "pi_test_1"}
    session.update(overrides)
    return session


# =============================================================================
# Building blocks
# =============================================================================


@pytest.mark.django_db
class TestGetOwnedRegistration:
    def test_returns_own_registration(self, pending, user) -> None:
        assert get_owned_registration(pending.pk, user) == pending

    def test_unknown_id(self, user) -> None:
        with pytest.raises(RegistrationNotFound):
            get_owned_registration("7d7b0c8e-0000-4000-8000-000000000000", user)

    def test_malformed_id(self, user) -> None:
        with pytest.raises(RegistrationNotFound):
            get_owned_registration("not-a-uuid", user)

    def test_other_owner(self, pending, other_user) -> None:
        with pytest.raises(RegistrationForbidden):
            get_owned_registration(pending.pk, other_user)

    def test_anonymous(self, pending) -> None:
        with pytest.raises(RegistrationForbidden):
            get_owned_registration(pending.pk, AnonymousUser())


@pytest.mark.django_db
class TestMarkRegistrationPaid:
    def test_first_caller_wins(self, pending, paid_signals) -> None:
        won = mark_registration_paid(pending, session_id="cs_test_1", payment_intent_id="pi_1", source="webhook")

        assert won is True
        assert pending.status == Registration.Status.PAID
        assert pending.stripe_payment_intent_id == "pi_1"
        assert pending.paid_at is not None
        assert paid_signals == [(pending.pk, "webhook")]

    def test_concurrent_callers_transition_once(self, pending, paid_signals) -> None:
        first = Registration.objects.get(pk=pending.pk)
        second = Registration.objects.get(pk=pending.pk)

        results = [
            mark_registration_paid(first, session_id="cs_test_1", payment_intent_id="pi_1", source="webhook"),
            mark_registration_paid(second, session_id="cs_test_1", payment_intent_id="pi_2", source="on_demand"),
        ]

        assert results == [True, False]
        assert second.status == Registration.Status.PAID
        assert second.stripe_payment_intent_id == "pi_1"
        assert len(paid_signals) == 1

    def test_cancelled_is_terminal(self, pending, paid_signals) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.CANCELLED)

        won = mark_registration_paid(pending, session_id="cs_test_1", payment_intent_id="pi_1", source="webhook")

        assert won is False
        assert pending.status == Registration.Status.CANCELLED
        assert paid_signals == []

    def test_keeps_existing_references_when_none(self, pending) -> None:
        mark_registration_paid(pending, session_id=None, payment_intent_id=None, source="webhook")
        assert pending.stripe_checkout_session_id == "cs_test_1"
        assert pending.stripe_payment_intent_id == ""


@pytest.mark.django_db
class TestEnsureVerificationCode:
    def test_generates_and_persists(self, pending) -> None:
        code = ensure_verification_code(pending)

        assert code.startswith(DATA_URL_PREFIX)
        pending.refresh_from_db()
        assert pending.qr_code_data_url == code

    def test_reuses_existing_code(self, pending) -> None:
        Registration.objects.filter(pk=pending.pk).update(qr_code_data_url="data:image/png;base64,EXISTING")
        pending.refresh_from_db()

        assert ensure_verification_code(pending) == "data:image/png;base64,EXISTING"

    def test_first_persisted_code_wins(self, pending) -> None:
        stale = Registration.objects.get(pk=pending.pk)
        Registration.objects.filter(pk=pending.pk).update(qr_code_data_url="data:image/png;base64,WINNER")

        assert ensure_verification_code(stale) == "data:image/png;base64,WINNER"
        pending.refresh_from_db()
        assert pending.qr_code_data_url == "data:image/png;base64,WINNER"


# =============================================================================
# Webhook path
# =============================================================================


@pytest.mark.django_db
class TestHandleCheckoutCompleted:
    def test_confirms_and_emails_once(self, pending, paid_signals, mock_send) -> None:
        assert ReconciliationService.handle_checkout_completed(str(pending.pk), _session()) is True

        pending.refresh_from_db()
        assert pending.status == Registration.Status.PAID
        assert pending.stripe_payment_intent_id == "pi_test_1"
        assert pending.qr_code_data_url.startswith(DATA_URL_PREFIX)
        assert paid_signals == [(pending.pk, "webhook")]
        mock_send.assert_called_once()
        params = mock_send.call_args.args[0]
        assert params["to"] == ["ada@example.com"]
        assert pending.qr_code_data_url in params["html"]

    def test_redelivery_is_a_no_op(self, pending, paid_signals, mock_send) -> None:
        ReconciliationService.handle_checkout_completed(str(pending.pk), _session())
        code = Registration.objects.get(pk=pending.pk).qr_code_data_url

        assert ReconciliationService.handle_checkout_completed(str(pending.pk), _session()) is False

        assert mock_send.call_count == 1
        assert len(paid_signals) == 1
        assert Registration.objects.get(pk=pending.pk).qr_code_data_url == code

    def test_unknown_registration(self, db, mock_send) -> None:
        session = _session()
        assert ReconciliationService.handle_checkout_completed("7d7b0c8e-0000-4000-8000-000000000000", session) is False
        assert ReconciliationService.handle_checkout_completed("garbage", session) is False
        mock_send.assert_not_called()

    def test_unsettled_session_is_ignored(self, pending, mock_send) -> None:
        result = ReconciliationService.handle_checkout_completed(str(pending.pk), _session(payment_status="unpaid"))

        assert result is False
        pending.refresh_from_db()
        assert pending.status == Registration.Status.PENDING
        mock_send.assert_not_called()

    def test_cancelled_registration_stays_cancelled(self, pending, paid_signals, mock_send) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.CANCELLED)

        assert ReconciliationService.handle_checkout_completed(str(pending.pk), _session()) is False

        pending.refresh_from_db()
        assert pending.status == Registration.Status.CANCELLED
        assert paid_signals == []
        mock_send.assert_not_called()

    def test_expanded_payment_intent(self, pending, mock_send) -> None:
        session = _session(payment_intent={"id": "pi_expanded", "object": "payment_intent"})
        ReconciliationService.handle_checkout_completed(str(pending.pk), session)
        pending.refresh_from_db()
        assert pending.stripe_payment_intent_id == "pi_expanded"

    def test_amount_mismatch_is_logged_but_confirmed(self, pending, mock_send, caplog) -> None:
        with caplog.at_level("WARNING", logger="concerto.registration.services.reconciliation"):
            result = ReconciliationService.handle_checkout_completed(str(pending.pk), _session(amount_total=1500))

        assert result is True
        assert "expecting 20.00" in caplog.text

    def test_matching_amount_is_not_logged(self, pending, mock_send, caplog) -> None:
        with caplog.at_level("WARNING", logger="concerto.registration.services.reconciliation"):
            ReconciliationService.handle_checkout_completed(str(pending.pk), _session(amount_total=2000))

        assert "expecting" not in caplog.text

    def test_missing_email_generates_code_without_sending(self, pending, mock_send) -> None:
        Registration.objects.filter(pk=pending.pk).update(email="")

        assert ReconciliationService.handle_checkout_completed(str(pending.pk), _session()) is True

        pending.refresh_from_db()
        assert pending.status == Registration.Status.PAID
        assert pending.qr_code_data_url.startswith(DATA_URL_PREFIX)
        mock_send.assert_not_called()

    def test_email_failure_keeps_payment(self, pending, mock_send) -> None:
        mock_send.side_effect = RuntimeError("provider down")

        assert ReconciliationService.handle_checkout_completed(str(pending.pk), _session()) is True

        pending.refresh_from_db()
        assert pending.status == Registration.Status.PAID
        assert pending.qr_code_data_url


# =============================================================================
# On-demand path
# =============================================================================


@pytest.mark.django_db
class TestConfirmPayment:
    def test_paid_registration_skips_stripe(self, pending, mock_sessions) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.PAID)
        pending.refresh_from_db()

        assert ReconciliationService.confirm_payment(pending) is pending
        mock_sessions.retrieve.assert_not_called()

    def test_cancelled_raises(self, pending, mock_sessions) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.CANCELLED)
        pending.refresh_from_db()

        with pytest.raises(RegistrationCancelled):
            ReconciliationService.confirm_payment(pending)
        mock_sessions.retrieve.assert_not_called()

    def test_missing_session(self, pending, mock_sessions) -> None:
        pending.stripe_checkout_session_id = ""
        with pytest.raises(MissingCheckoutSession):
            ReconciliationService.confirm_payment(pending)

    def test_unpaid_session(self, pending, mock_sessions) -> None:
        mock_sessions.retrieve.return_value = MagicMock(id="cs_test_1", payment_status="unpaid", payment_intent=None)

        with pytest.raises(PaymentNotConfirmed):
            ReconciliationService.confirm_payment(pending)

        pending.refresh_from_db()
        assert pending.status == Registration.Status.PENDING

    def test_gateway_error(self, pending, mock_sessions) -> None:
        mock_sessions.retrieve.side_effect = _stripe.StripeError("unavailable")

        with pytest.raises(PaymentGatewayError):
            ReconciliationService.confirm_payment(pending)

    def test_free_session_confirms(self, pending, mock_sessions, paid_signals) -> None:
        mock_sessions.retrieve.return_value = MagicMock(
            id="cs_test_1",
            payment_status="no_payment_required",
            payment_intent=None,
        )

        registration = ReconciliationService.confirm_payment(pending)

        assert registration.status == Registration.Status.PAID
        assert paid_signals == [(pending.pk, "on_demand")]

    def test_paid_session_confirms(self, pending, mock_sessions, paid_signals) -> None:
        registration = ReconciliationService.confirm_payment(pending)

        assert registration.status == Registration.Status.PAID
        assert registration.stripe_payment_intent_id == "pi_test_1"
        mock_sessions.retrieve.assert_called_once_with("cs_test_1")
        assert paid_signals == [(pending.pk, "on_demand")]


@pytest.mark.django_db
class TestSendTicket:
    def test_pending_paid_at_stripe(self, pending, user, mock_sessions, mock_send) -> None:
        delivery = ReconciliationService.send_ticket(pending.pk, user)

        assert delivery.sent is True
        assert delivery.code_ready is True
        pending.refresh_from_db()
        assert pending.status == Registration.Status.PAID
        mock_send.assert_called_once()

    def test_already_paid_skips_stripe(self, pending, user, mock_sessions, mock_send) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.PAID)

        assert ReconciliationService.send_ticket(pending.pk, user).sent is True
        mock_sessions.retrieve.assert_not_called()

    def test_code_is_stable_across_sends(self, pending, user, mock_sessions, mock_send) -> None:
        ReconciliationService.send_ticket(pending.pk, user)
        ReconciliationService.send_ticket(pending.pk, user)

        first_html = mock_send.call_args_list[0].args[0]["html"]
        second_html = mock_send.call_args_list[1].args[0]["html"]
        code = Registration.objects.get(pk=pending.pk).qr_code_data_url
        assert code in first_html
        assert code in second_html

    def test_delivery_failure_is_reported(self, pending, user, mock_sessions, mock_send) -> None:
        mock_send.side_effect = RuntimeError("provider down")

        delivery = ReconciliationService.send_ticket(pending.pk, user)

        assert delivery.sent is False
        assert delivery.code_ready is True
        pending.refresh_from_db()
        assert pending.status == Registration.Status.PAID

    def test_wrong_owner_makes_no_external_call(self, pending, other_user, mock_sessions, mock_send) -> None:
        with pytest.raises(RegistrationForbidden):
            ReconciliationService.send_ticket(pending.pk, other_user)
        mock_sessions.retrieve.assert_not_called()
        mock_send.assert_not_called()

    def test_unknown_registration(self, user, mock_sessions) -> None:
        with pytest.raises(RegistrationNotFound):
            ReconciliationService.send_ticket("7d7b0c8e-0000-4000-8000-000000000000", user)

    def test_missing_email(self, pending, user, mock_sessions, mock_send) -> None:
        Registration.objects.filter(pk=pending.pk).update(email="")

        with pytest.raises(MissingContactEmail):
            ReconciliationService.send_ticket(pending.pk, user)
        mock_sessions.retrieve.assert_not_called()

    def test_unpaid_at_stripe(self, pending, user, mock_sessions, mock_send) -> None:
        mock_sessions.retrieve.return_value = MagicMock(id="cs_test_1", payment_status="unpaid", payment_intent=None)

        with pytest.raises(PaymentNotConfirmed):
            ReconciliationService.send_ticket(pending.pk, user)
        mock_send.assert_not_called()


@pytest.mark.django_db
class TestBuildTicketFile:
    def test_renders_pdf(self, pending, user, mock_sessions) -> None:
        ticket = ReconciliationService.build_ticket_file(pending.pk, user)

        assert ticket.filename == f"concerto-ticket-{pending.pk}.pdf"
        assert ticket.content.startswith(b"%PDF")
        pending.refresh_from_db()
        assert pending.status == Registration.Status.PAID
        assert pending.qr_code_data_url

    def test_cancelled(self, pending, user, mock_sessions) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.CANCELLED)
        with pytest.raises(RegistrationCancelled):
            ReconciliationService.build_ticket_file(pending.pk, user)


@pytest.mark.django_db
class TestResumeCheckout:
    def test_replaces_session_and_clears_intent(self, pending, user, mock_sessions) -> None:
        Registration.objects.filter(pk=pending.pk).update(stripe_payment_intent_id="pi_old")

        redirect = ReconciliationService.resume_checkout(pending.pk, user)

        assert redirect.session_id == "cs_test_2"
        assert redirect.url == "https://checkout.stripe.com/c/pay/cs_test_2"
        pending.refresh_from_db()
        assert pending.status == Registration.Status.PENDING
        assert pending.stripe_checkout_session_id == "cs_test_2"
        assert pending.stripe_payment_intent_id == ""
        params = mock_sessions.create.call_args.kwargs["params"]
        assert params["metadata"]["registration_id"] == str(pending.pk)

    def test_each_resume_uses_a_fresh_idempotency_key(self, pending, user, mock_sessions) -> None:
        ReconciliationService.resume_checkout(pending.pk, user)
        ReconciliationService.resume_checkout(pending.pk, user)

        first, second = (c.kwargs["options"]["idempotency_key"] for c in mock_sessions.create.call_args_list)
        assert first.startswith(f"registration-{pending.pk}-")
        assert first != second

    def test_paid_registration(self, pending, user, mock_sessions) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.PAID)
        with pytest.raises(AlreadyConfirmed):
            ReconciliationService.resume_checkout(pending.pk, user)
        mock_sessions.create.assert_not_called()

    def test_cancelled_registration(self, pending, user, mock_sessions) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.CANCELLED)
        with pytest.raises(RegistrationCancelled, match="cannot be resumed"):
            ReconciliationService.resume_checkout(pending.pk, user)

    def test_minimum_amount_rechecked(self, pending, user, mock_sessions) -> None:
        config = {
            "site_url": "https://concert.example.org",
            "stripe": {"secret_key": "sk_test"},
            "minimum_amount": "50",
        }
        with override_settings(CONCERTO=config), pytest.raises(InvalidAmount):
            ReconciliationService.resume_checkout(pending.pk, user)
        mock_sessions.create.assert_not_called()

    def test_wrong_owner(self, pending, other_user, mock_sessions) -> None:
        with pytest.raises(RegistrationForbidden):
            ReconciliationService.resume_checkout(pending.pk, other_user)
        mock_sessions.create.assert_not_called()

    def test_gateway_failure_keeps_previous_session(self, pending, user, mock_sessions) -> None:
        mock_sessions.create.side_effect = _stripe.StripeError("unavailable")
        with pytest.raises(PaymentGatewayError):
            ReconciliationService.resume_checkout(pending.pk, user)
        pending.refresh_from_db()
        assert pending.stripe_checkout_session_id == "cs_test_1"


@pytest.mark.django_db
class TestCancelRegistration:
    def test_cancels_pending(self, pending) -> None:
        assert ReconciliationService.cancel_registration(pending) is True
        assert pending.status == Registration.Status.CANCELLED

    def test_paid_is_untouched(self, pending) -> None:
        Registration.objects.filter(pk=pending.pk).update(status=Registration.Status.PAID)
        assert ReconciliationService.cancel_registration(pending) is False
        assert pending.status == Registration.Status.PAID
