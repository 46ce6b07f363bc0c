"""Forms for the registration app."""

from collections.abc import Mapping

from django import forms
from django.core.validators import RegexValidator

phone_validator = RegexValidator(
    regex=r"^\+?[0-9][0-9 ().-]{5,24}$",
    message="Enter a valid phone number.",
)

# JSON clients send camelCase keys; forms use the model's field names.
FIELD_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "eventId": "event_id",
}


def normalize_keys(data: Mapping[str, object]) -> dict[str, object]:
    """Return *data* with camelCase keys renamed to their form field names."""
    return {FIELD_ALIASES.get(key, key): value for key, value in data.items()}


class RegistrationCheckoutForm(forms.Form):
    """Participant details collected before opening a Checkout session.

    The amount is only checked for shape here; the positive and minimum
    amount rules are enforced by the checkout service.
    """

    first_name = forms.CharField(max_length=150, strip=True)
    last_name = forms.CharField(max_length=150, strip=True)
    email = forms.EmailField()
    phone = forms.CharField(max_length=50, strip=True, validators=[phone_validator])
    amount = forms.DecimalField(max_digits=10, decimal_places=2)
    event_id = forms.CharField(max_length=200, required=False, strip=True)

    def clean_email(self) -> str:
        """Store addresses lower-cased so lookups and receipts are consistent."""
        return self.cleaned_data["email"].strip().lower()
