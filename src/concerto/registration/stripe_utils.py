"""Helpers for talking to Stripe: amounts, expandable references and key masking.

Stripe represents monetary amounts as integers in the smallest currency unit (e.g.
cents for EUR). Most currencies are "normal-decimal" where 1 unit = 100 smallest
units, but a subset of currencies are "zero-decimal" where the integer amount *is*
the unit amount.

Several Stripe fields (``payment_intent`` on a checkout session, ``customer``...)
are *expandable*: they hold either the object id or the expanded object. The
helpers here normalise both shapes to a plain id.
"""

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

_OBFUSCATE_VISIBLE_CHARS = 4

ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)


def convert_amount_for_api(amount: Decimal, currency: str) -> int:
    """Convert a Decimal amount to the integer representation expected by the Stripe API.

    ``Decimal("25.50")`` in EUR becomes ``2550``. Sub-cent remainders are rounded
    half-up rather than truncated. Zero-decimal currencies such as JPY are
    rounded to whole units.

    Args:
        amount: The monetary amount as a :class:`~decimal.Decimal`.
        currency: An ISO 4217 currency code (case-insensitive).

    Returns:
        The amount as an integer in the smallest currency unit suitable for Stripe.
    """
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def convert_amount_for_db(amount: int, currency: str) -> Decimal:
    """Convert an integer amount from the Stripe API back to a Decimal.

    Inverse of :func:`convert_amount_for_api`: ``2550`` in EUR becomes
    ``Decimal("25.50")``.

    Args:
        amount: The integer amount in the smallest currency unit as returned by Stripe.
        currency: An ISO 4217 currency code (case-insensitive).

    Returns:
        The amount as a :class:`~decimal.Decimal` suitable for a ``DecimalField``.
    """
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(str(amount))
    return Decimal(str(amount)) / 100


def expandable_id(value: object) -> str | None:
    """Return the id behind an expandable Stripe field.

    Args:
        value: A string id, an expanded object (mapping or ``StripeObject``)
            carrying an ``id``, or ``None``.

    Returns:
        The id string, or ``None`` when the field is empty or has no id.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        ident = value.get("id")
    else:
        ident = getattr(value, "id", None)
    return ident if isinstance(ident, str) and ident else None


def metadata_value(metadata: object, key: str) -> str | None:
    """Read a non-empty string from a Stripe ``metadata`` field.

    Args:
        metadata: The metadata mapping (may be ``None`` or malformed).
        key: The metadata key to read.

    Returns:
        The stripped value, or ``None`` when absent or empty.
    """
    if not isinstance(metadata, Mapping):
        return None
    value = metadata.get(key)
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def obfuscate_key(key: str) -> str:
    """Obfuscate an API key so it can be safely written to logs.

    Args:
        key: The secret key to obfuscate.

    Returns:
        ``"****"`` followed by the last four characters, or just ``"****"``
        for keys shorter than four characters.
    """
    if len(key) < _OBFUSCATE_VISIBLE_CHARS:
        return "****"
    return "****" + key[-_OBFUSCATE_VISIBLE_CHARS:]
