"""Django app configuration for the registration app."""

from django.apps import AppConfig


class ConcertoRegistrationConfig(AppConfig):
    """Configuration for the registration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "concerto.registration"
    label = "concerto_registration"
    verbose_name = "Registration"
