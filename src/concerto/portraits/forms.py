"""Forms for the portraits app."""

from pathlib import Path

from django import forms

from concerto.settings import get_config

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/heic",
        "image/heif",
    }
)
ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif"})


class PortraitUploadForm(forms.Form):
    """A photo to turn into a portrait, with an optional custom prompt."""

    image = forms.FileField()
    prompt = forms.CharField(max_length=1000, required=False, strip=True)

    def clean_image(self) -> object:
        """Reject files that are too large or not a supported image type."""
        image = self.cleaned_data["image"]
        limit = get_config().portraits.max_upload_bytes
        if image.size > limit:
            msg = f"The image must not exceed {limit // (1024 * 1024)} MB."
            raise forms.ValidationError(msg)

        content_type = (getattr(image, "content_type", "") or "").lower()
        extension = Path(image.name or "").suffix.lower()
        if content_type not in ALLOWED_CONTENT_TYPES and extension not in ALLOWED_EXTENSIONS:
            msg = "Unsupported image format. Use JPEG, PNG, WebP or HEIC."
            raise forms.ValidationError(msg)
        return image
