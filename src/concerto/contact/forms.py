"""Forms for the contact app."""

from collections.abc import Mapping

from django import forms

FIELD_ALIASES = {
    "fullName": "full_name",
    "nomPrenom": "full_name",
}


def normalize_keys(data: Mapping[str, object]) -> dict[str, object]:
    """Return *data* with client-side key names mapped to form fields."""
    return {FIELD_ALIASES.get(key, key): value for key, value in data.items()}


class ContactRequestForm(forms.Form):
    """Name and email are required; the message is optional."""

    full_name = forms.CharField(max_length=200, strip=True)
    email = forms.EmailField()
    message = forms.CharField(max_length=5000, required=False, strip=True)

    def clean_email(self) -> str:  # noqa: D102
        return self.cleaned_data["email"].strip().lower()
