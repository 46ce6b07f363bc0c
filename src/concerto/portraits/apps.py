"""Django app configuration for the portraits app."""

from django.apps import AppConfig


class ConcertoPortraitsConfig(AppConfig):
    """Configuration for the portraits app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "concerto.portraits"
    label = "concerto_portraits"
    verbose_name = "Portraits"

    def ready(self) -> None:
        """Import signal handlers so they are connected on startup."""
        import concerto.portraits.signals  # noqa: F401, PLC0415
