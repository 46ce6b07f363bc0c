"""Typed configuration for concerto.

Reads a single ``CONCERTO`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from concerto.settings import get_config

    config = get_config()
    config.stripe.secret_key
    config.event.title
    config.currency

Secrets (the Stripe keys, the email API key) are never defaulted.  Entry
points that need them call :func:`require_settings`, which raises
:class:`~django.core.exceptions.ImproperlyConfigured` naming every missing
value.
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe payment gateway configuration."""

    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    api_version: str = "2024-12-18.acacia"
    webhook_tolerance: int = 300


@dataclass(frozen=True, slots=True)
class EmailConfig:
    """Transactional email (Resend) configuration."""

    api_key: str | None = None
    from_email: str | None = None
    reply_to: str | None = None


@dataclass(frozen=True, slots=True)
class VerificationConfig:
    """Rendering options for the QR check-in code."""

    dark: str = "#3d1f15"
    light: str = "#ffffff"
    margin: int = 1
    scale: int = 8
    checkin_path: str = "/dashboard/"


@dataclass(frozen=True, slots=True)
class EventConfig:
    """Metadata of the single event tickets are issued for."""

    id: str = "sous-la-voute-de-l-etoile-20250116"
    title: str = "Sous la voûte de l'Étoile"
    subtitle: str = "Concert caritatif"
    venue: str = "Temple de l'Étoile"
    address: str = "54-56 Av. de la Grande Armée, 75017 Paris, France"
    maps_url: str = "https://maps.google.com/?q=54-56+Av.+de+la+Grande+Arm%C3%A9e,+75017+Paris"
    date_label: str = "Vendredi 16 janvier 2025"
    time_label: str = "20h00"


@dataclass(frozen=True, slots=True)
class PortraitsConfig:
    """AI portrait generation (Replicate) configuration."""

    replicate_api_token: str | None = None
    replicate_api_url: str = "https://api.replicate.com/v1"
    replicate_model: str = "google/nano-banana"
    default_prompt: str = (
        "Transform this photo into an elegant classical concert portrait, "
        "warm candle light, oil painting texture"
    )
    price: Decimal = Decimal("5.00")
    request_timeout: float = 60.0
    poll_interval: float = 2.0
    max_wait: float = 180.0
    max_upload_bytes: int = 10 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class FeaturesConfig:
    """Feature toggles for enabling/disabling concerto apps.

    All features are enabled by default. Set to ``False`` in
    ``CONCERTO['features']`` to disable.
    """

    registration_enabled: bool = True
    portraits_enabled: bool = True
    contact_enabled: bool = True


@dataclass(frozen=True, slots=True)
class ConcertoConfig:
    """Top-level concerto configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    event: EventConfig = field(default_factory=EventConfig)
    portraits: PortraitsConfig = field(default_factory=PortraitsConfig)
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    site_url: str | None = None
    dashboard_path: str = "/dashboard/"
    currency: str = "EUR"
    currency_symbol: str = "€"
    currency_locale: str = "fr"
    minimum_amount: Decimal = Decimal("1.00")
    ticket_logo_path: str | None = None
    ticket_filename_prefix: str = "concerto-ticket"


_SECTIONS = {
    "stripe": StripeConfig,
    "email": EmailConfig,
    "verification": VerificationConfig,
    "event": EventConfig,
    "portraits": PortraitsConfig,
    "features": FeaturesConfig,
}


@functools.lru_cache(maxsize=1)
def get_config() -> ConcertoConfig:
    """Build and return the concerto configuration.

    Reads ``settings.CONCERTO`` (a plain dict) and returns a frozen
    :class:`ConcertoConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "CONCERTO", {})
    if not isinstance(raw, Mapping):
        msg = "CONCERTO must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    sections: dict[str, object] = {}
    for name, section_cls in _SECTIONS.items():
        section_data = raw_data.pop(name, {})
        if not isinstance(section_data, Mapping):
            msg = f"CONCERTO[{name!r}] must be a mapping (dict-like object)"
            raise TypeError(msg)
        section_data = dict(section_data)
        if name == "portraits" and "price" in section_data:
            section_data["price"] = _to_decimal(section_data["price"], "CONCERTO['portraits']['price']")
        sections[name] = section_cls(**section_data)

    if "minimum_amount" in raw_data:
        raw_data["minimum_amount"] = _to_decimal(raw_data["minimum_amount"], "CONCERTO['minimum_amount']")

    config = ConcertoConfig(**sections, **raw_data)
    _validate_config(config)
    return config


def _to_decimal(value: object, name: str) -> Decimal:
    """Coerce a settings value to :class:`~decimal.Decimal`.

    Args:
        value: The raw value from settings (``str``, ``int`` or ``Decimal``).
        name: The setting path used in the error message.

    Returns:
        The value as a ``Decimal``.

    Raises:
        ValueError: If the value cannot be interpreted as a decimal number.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError) as exc:
        msg = f"{name} must be a decimal number"
        raise ValueError(msg) from exc


def _validate_config(config: ConcertoConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "CONCERTO['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.currency_symbol, str) or not config.currency_symbol.strip():
        msg = "CONCERTO['currency_symbol'] must be a non-empty string"
        raise ValueError(msg)
    if not config.minimum_amount.is_finite() or config.minimum_amount <= 0:
        msg = "CONCERTO['minimum_amount'] must be a positive amount"
        raise ValueError(msg)
    if not isinstance(config.stripe.webhook_tolerance, int) or config.stripe.webhook_tolerance <= 0:
        msg = "CONCERTO['stripe']['webhook_tolerance'] must be a positive integer"
        raise ValueError(msg)
    if not isinstance(config.verification.margin, int) or config.verification.margin < 0:
        msg = "CONCERTO['verification']['margin'] must be a non-negative integer"
        raise ValueError(msg)
    if not isinstance(config.verification.scale, int) or config.verification.scale < 1:
        msg = "CONCERTO['verification']['scale'] must be a positive integer"
        raise ValueError(msg)
    if not config.portraits.price.is_finite() or config.portraits.price <= 0:
        msg = "CONCERTO['portraits']['price'] must be a positive amount"
        raise ValueError(msg)
    if config.site_url and not config.site_url.startswith(("http://", "https://")):
        msg = "CONCERTO['site_url'] must be an absolute http(s) URL"
        raise ValueError(msg)


def require_settings(*names: str) -> ConcertoConfig:
    """Return the config, ensuring the named values are configured.

    Names are dotted paths into :class:`ConcertoConfig`, for example
    ``"stripe.secret_key"`` or ``"site_url"``.

    Args:
        *names: Dotted setting paths that must hold a non-empty value.

    Returns:
        The current :class:`ConcertoConfig`.

    Raises:
        ImproperlyConfigured: If one or more of the named values is missing.
    """
    config = get_config()
    missing = []
    for name in names:
        value: object = config
        for part in name.split("."):
            value = getattr(value, part)
        if not value:
            missing.append(name)
    if missing:
        msg = f"CONCERTO is missing required settings: {', '.join(missing)}"
        raise ImproperlyConfigured(msg)
    return config


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "CONCERTO":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="concerto.settings.clear_config_cache")
