"""Check-in verification codes.

A verification code is a QR code encoding the check-in URL of a
registration, rendered to PNG and carried around as a ``data:`` URL so it can
be stored on the row, embedded in email HTML and drawn into the PDF ticket.
"""

import base64
import io
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from concerto.settings import get_config, require_settings

DATA_URL_PREFIX = "data:image/png;base64,"


def build_checkin_url(registration_id: object) -> str:
    """Return the URL a door scanner opens for a registration.

    Args:
        registration_id: The registration primary key.

    Returns:
        ``{site_url}{checkin_path}?registration=<id>``.

    Raises:
        ImproperlyConfigured: If ``CONCERTO['site_url']`` is not set.
    """
    config = require_settings("site_url")
    origin = str(config.site_url).rstrip("/")
    path = config.verification.checkin_path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{origin}{path}?{urlencode({'registration': str(registration_id)})}"


def generate_verification_code(payload: str) -> str:
    """Render *payload* as a QR code PNG data URL.

    Colours, quiet-zone margin and module scale come from
    ``CONCERTO['verification']``.

    Args:
        payload: The text to encode, typically :func:`build_checkin_url`.

    Returns:
        A ``data:image/png;base64,...`` string.

    Raises:
        ValueError: If *payload* is empty.
    """
    if not payload:
        msg = "Cannot encode an empty verification payload"
        raise ValueError(msg)

    style = get_config().verification
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=style.scale,
        border=style.margin,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color=style.dark, back_color=style.light)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")


def decode_data_url(data_url: str) -> bytes:
    """Return the PNG bytes carried by a verification code data URL.

    Raises:
        ValueError: If *data_url* is not a base64 PNG data URL.
    """
    if not data_url.startswith(DATA_URL_PREFIX):
        msg = "Not a PNG data URL"
        raise ValueError(msg)
    return base64.b64decode(data_url[len(DATA_URL_PREFIX) :], validate=True)
