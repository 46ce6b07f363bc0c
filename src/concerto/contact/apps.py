"""Django app configuration for the contact app."""

from django.apps import AppConfig


class ConcertoContactConfig(AppConfig):
    """Configuration for the contact app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "concerto.contact"
    label = "concerto_contact"
    verbose_name = "Contact"
