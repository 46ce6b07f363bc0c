"""Tests for ticket email delivery."""

import base64
from dataclasses import replace
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from concerto.registration.services.documents import TicketDetails
from concerto.registration.services.notifications import dispatch_ticket, send_ticket_email, ticket_filename

SEND_PATH = "concerto.registration.services.notifications.resend.Emails.send"

CODE = "data:image/png;base64,iVBORw0KGgo="


@pytest.fixture
def details() -> TicketDetails:
    return TicketDetails(
        registration_id="reg-1",
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        amount=Decimal("25.00"),
        currency="EUR",
        verification_code=CODE,
    )


@pytest.mark.unit
class TestTicketFilename:
    def test_default_prefix(self) -> None:
        assert ticket_filename("reg-1") == "concerto-ticket-reg-1.pdf"

    def test_configured_prefix(self) -> None:
        with override_settings(CONCERTO={"ticket_filename_prefix": "billet"}):
            assert ticket_filename("reg-1") == "billet-reg-1.pdf"


@pytest.mark.unit
class TestSendTicketEmail:
    def test_sends_with_attachment(self, details) -> None:
        with patch(SEND_PATH, return_value={"id": "msg_123"}) as mock_send:
            message_id = send_ticket_email("ada@example.com", details, b"%PDF-1.4 test")

        assert message_id == "msg_123"
        params = mock_send.call_args.args[0]
        assert params["from"] == "billetterie@concert.example.org"
        assert params["to"] == ["ada@example.com"]
        assert "Sous la voûte de l'Étoile" in params["subject"]
        assert "\n" not in params["subject"]
        assert CODE in params["html"]
        assert "Ada Lovelace" in params["text"]
        assert "25,00" in params["text"]
        attachment = params["attachments"][0]
        assert attachment["filename"] == "concerto-ticket-reg-1.pdf"
        assert attachment["content_type"] == "application/pdf"
        assert base64.b64decode(attachment["content"]) == b"%PDF-1.4 test"
        assert "reply_to" not in params

    def test_sets_api_key(self, details) -> None:
        with patch("concerto.registration.services.notifications.resend") as mock_resend:
            mock_resend.Emails.send.return_value = {"id": "msg_1"}
            send_ticket_email("ada@example.com", details, b"%PDF")
        assert mock_resend.api_key == "re_test_concerto"

    def test_reply_to(self, details) -> None:
        config = {
            "email": {"api_key": "re_test", "from_email": "from@example.org", "reply_to": "help@example.org"},
        }
        with override_settings(CONCERTO=config), patch(SEND_PATH, return_value={"id": "msg_1"}) as mock_send:
            send_ticket_email("ada@example.com", details, b"%PDF")
        assert mock_send.call_args.args[0]["reply_to"] == "help@example.org"

    def test_requires_configuration(self, details) -> None:
        with override_settings(CONCERTO={"email": {"from_email": "from@example.org"}}):
            with pytest.raises(ImproperlyConfigured, match="email.api_key"):
                send_ticket_email("ada@example.com", details, b"%PDF")

    def test_requires_recipient(self, details) -> None:
        with pytest.raises(ValueError, match="recipient"):
            send_ticket_email("", details, b"%PDF")

    def test_empty_names_render_blank(self, details) -> None:
        anonymous = replace(details, first_name="", last_name="")
        with patch(SEND_PATH, return_value={"id": "msg_1"}) as mock_send:
            send_ticket_email("ada@example.com", anonymous, b"%PDF")

        params = mock_send.call_args.args[0]
        assert params["text"].startswith("Bonjour,")
        assert "Bonjour," in params["html"]

    def test_amount_uses_registration_currency(self, details) -> None:
        with patch(SEND_PATH, return_value={"id": "msg_1"}) as mock_send:
            send_ticket_email("ada@example.com", replace(details, currency="USD"), b"%PDF")

        params = mock_send.call_args.args[0]
        assert "25,00\xa0$" in params["text"]
        assert "€" not in params["text"]


@pytest.mark.unit
class TestDispatchTicket:
    def test_returns_true_on_success(self, details) -> None:
        with patch(SEND_PATH, return_value={"id": "msg_1"}):
            assert dispatch_ticket("ada@example.com", details, b"%PDF") is True

    def test_provider_failure_returns_false(self, details) -> None:
        with patch(SEND_PATH, side_effect=RuntimeError("provider down")):
            assert dispatch_ticket("ada@example.com", details, b"%PDF") is False

    def test_missing_configuration_propagates(self, details) -> None:
        with override_settings(CONCERTO={}), pytest.raises(ImproperlyConfigured):
            dispatch_ticket("ada@example.com", details, b"%PDF")
