"""PDF ticket rendering.

Tickets are a single landscape page drawn directly on a reportlab canvas:
a coloured header band with the logo, the event title, the participant and
event details on the left and the framed check-in QR code on the right.
"""

from __future__ import annotations

import base64
import functools
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from django.test.signals import setting_changed
from django.utils.formats import get_format
from django.utils.numberformat import format as number_format
from reportlab.lib.colors import Color, white
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from concerto.registration.services.verification import decode_data_url
from concerto.registration.stripe_utils import ZERO_DECIMAL_CURRENCIES
from concerto.settings import get_config

if TYPE_CHECKING:
    from decimal import Decimal

    from concerto.registration.models import Registration

logger = logging.getLogger(__name__)

PAGE_SIZE = (595.28, 420.0)
MARGIN = 36.0
HEADER_HEIGHT = 90.0
QR_SIZE = 180.0
QR_PADDING = 16.0
QR_RIGHT_MARGIN = 48.0
LINE_GAP = 20.0

BACKGROUND = Color(0.995, 0.973, 0.94)
ACCENT = Color(0.478, 0.157, 0.125)
TEXT = Color(0.267, 0.215, 0.188)

HEADING_FONT = "Helvetica-Bold"
BODY_FONT = "Helvetica"

# 1x1 PNG drawn when no logo file is configured or readable.
PLACEHOLDER_LOGO = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


@dataclass(frozen=True, slots=True)
class TicketDetails:
    """Everything printed on a ticket."""

    registration_id: str
    first_name: str
    last_name: str
    email: str
    amount: Decimal
    currency: str
    verification_code: str

    @classmethod
    def from_registration(cls, registration: Registration) -> TicketDetails:
        """Build ticket details from a registration that carries a verification code.

        Args:
            registration: A paid registration with ``qr_code_data_url`` set.

        Returns:
            The populated :class:`TicketDetails`.

        Raises:
            ValueError: If the registration has no verification code yet.
        """
        if not registration.qr_code_data_url:
            msg = f"Registration {registration.pk} has no verification code"
            raise ValueError(msg)
        return cls(
            registration_id=str(registration.pk),
            first_name=registration.first_name,
            last_name=registration.last_name,
            email=registration.email,
            amount=registration.amount,
            currency=registration.currency,
            verification_code=registration.qr_code_data_url,
        )

    @property
    def full_name(self) -> str:
        """Return the participant's display name."""
        return f"{self.first_name} {self.last_name}".strip()


CURRENCY_SYMBOLS: dict[str, str] = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "CHF": "CHF",
    "JPY": "¥",
    "CAD": "CA$",
}


def currency_symbol(currency: str) -> str:
    """Return the display symbol for an ISO 4217 *currency* code.

    The configured currency uses ``CONCERTO['currency_symbol']``; other
    known codes use their usual symbol and unknown codes print as-is.
    """
    config = get_config()
    code = currency.upper()
    if code == config.currency.upper():
        return config.currency_symbol
    return CURRENCY_SYMBOLS.get(code, code)


def format_amount(amount: Decimal, currency: str | None = None) -> str:
    """Format *amount* in *currency* using the ``currency_locale`` separators.

    The locale's separators are looked up explicitly, so the output does not
    depend on the active language or on ``USE_I18N``.  With the default
    French locale ``Decimal("1234.5")`` renders as ``"1 234,50 €"``
    (non-breaking spaces).  Zero-decimal currencies print whole units.

    Args:
        amount: The amount in major currency units.
        currency: ISO 4217 code; defaults to ``CONCERTO['currency']``.

    Returns:
        The localized amount followed by the currency symbol.
    """
    config = get_config()
    code = (currency or config.currency).upper()
    locale = config.currency_locale
    number = number_format(
        amount,
        get_format("DECIMAL_SEPARATOR", lang=locale, use_l10n=True),
        decimal_pos=0 if code in ZERO_DECIMAL_CURRENCIES else 2,
        grouping=get_format("NUMBER_GROUPING", lang=locale, use_l10n=True),
        thousand_sep=get_format("THOUSAND_SEPARATOR", lang=locale, use_l10n=True),
        force_grouping=True,
    )
    # Narrow no-break spaces are not in the standard PDF font encoding.
    number = number.replace("\u202f", "\xa0")
    return f"{number}\xa0{currency_symbol(code)}"


@functools.lru_cache(maxsize=1)
def load_logo_bytes() -> bytes:
    """Return the ticket logo PNG, falling back to a blank placeholder.

    The file named by ``CONCERTO['ticket_logo_path']`` is read once and
    cached for the life of the process.
    """
    logo_path = get_config().ticket_logo_path
    if logo_path:
        try:
            return Path(logo_path).read_bytes()
        except OSError:
            logger.warning("Ticket logo %s could not be read, using placeholder", logo_path)
    return PLACEHOLDER_LOGO


def _clear_logo_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    if setting == "CONCERTO":
        load_logo_bytes.cache_clear()


setting_changed.connect(_clear_logo_cache, dispatch_uid="concerto.registration.documents.clear_logo_cache")


def _fit_text(text: str, font: str, size: float, max_width: float) -> str:
    """Truncate *text* with an ellipsis so it fits in *max_width* points."""
    if stringWidth(text, font, size) <= max_width:
        return text
    ellipsis = "..."
    while text and stringWidth(text + ellipsis, font, size) > max_width:
        text = text[:-1]
    return text.rstrip() + ellipsis


def render_ticket_pdf(details: TicketDetails) -> bytes:
    """Render the ticket for *details* as a one-page PDF.

    Text on the left is truncated so that it never runs under the QR frame.
    The output is byte-for-byte reproducible for identical inputs.

    Args:
        details: The ticket contents.

    Returns:
        The PDF document bytes.

    Raises:
        ValueError: If the verification code is not a PNG data URL.
    """
    event = get_config().event
    qr_reader = ImageReader(io.BytesIO(decode_data_url(details.verification_code)))
    logo_reader = ImageReader(io.BytesIO(load_logo_bytes()))

    width, height = PAGE_SIZE
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE, invariant=True)
    pdf.setTitle(f"{event.title} - {details.full_name}")

    # Background and header band.
    pdf.setFillColor(BACKGROUND)
    pdf.rect(0, 0, width, height, stroke=0, fill=1)
    pdf.setFillColor(ACCENT)
    pdf.rect(0, height - HEADER_HEIGHT, width, HEADER_HEIGHT, stroke=0, fill=1)

    logo_w, logo_h = logo_reader.getSize()
    draw_w = 96.0
    draw_h = min(draw_w * logo_h / logo_w, HEADER_HEIGHT - 20)
    draw_w = draw_h * logo_w / logo_h
    pdf.drawImage(logo_reader, MARGIN, height - HEADER_HEIGHT + 10, width=draw_w, height=draw_h, mask="auto")

    # QR frame on the right.
    qr_w, qr_h = qr_reader.getSize()
    qr_draw_h = QR_SIZE * qr_h / qr_w
    qr_x = width - QR_SIZE - QR_RIGHT_MARGIN
    qr_y = (height - HEADER_HEIGHT) / 2 - qr_draw_h / 2 + 10
    frame_x = qr_x - QR_PADDING
    pdf.setFillColor(white)
    pdf.setStrokeColor(ACCENT)
    pdf.setLineWidth(1.5)
    pdf.rect(frame_x, qr_y - QR_PADDING, QR_SIZE + 2 * QR_PADDING, qr_draw_h + 2 * QR_PADDING, stroke=1, fill=1)
    pdf.drawImage(qr_reader, qr_x, qr_y, width=QR_SIZE, height=qr_draw_h)

    text_left = MARGIN + draw_w + 16
    header_width = width - text_left - MARGIN
    body_width = frame_x - MARGIN - 12

    pdf.setFillColor(white)
    pdf.setFont(HEADING_FONT, 22)
    pdf.drawString(text_left, height - 52, _fit_text("Billet d'entrée - Concerto", HEADING_FONT, 22, header_width))
    if event.subtitle:
        pdf.setFont(BODY_FONT, 12)
        pdf.drawString(text_left, height - 72, _fit_text(event.subtitle, BODY_FONT, 12, header_width))

    pdf.setFillColor(ACCENT)
    pdf.setFont(HEADING_FONT, 18)
    pdf.drawString(MARGIN, height - 118, _fit_text(event.title, HEADING_FONT, 18, body_width))

    pdf.setFillColor(TEXT)
    pdf.setFont(BODY_FONT, 14)
    confirmed = f"Place confirmée pour le {event.date_label.lower()}"
    pdf.drawString(MARGIN, height - 144, _fit_text(confirmed, BODY_FONT, 14, body_width))

    lines = [
        f"Participant · {details.full_name}",
        f"Email · {details.email}",
        f"Participation · {format_amount(details.amount, details.currency)}",
        f"Date · {event.date_label} · {event.time_label}",
        f"Lieu · {event.venue}",
        f"Adresse · {event.address}",
        f"Référence · {details.registration_id}",
    ]
    y = height - 180
    pdf.setFont(BODY_FONT, 11)
    for line in lines:
        pdf.drawString(MARGIN, y, _fit_text(line, BODY_FONT, 11, body_width))
        y -= LINE_GAP

    pdf.setFont(BODY_FONT, 10)
    footer = "Présentez ce billet (ou son QR code) à l'accueil pour accéder au concert."
    pdf.drawString(MARGIN, max(y - 8, 18), _fit_text(footer, BODY_FONT, 10, body_width))

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()
