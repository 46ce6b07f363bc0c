"""Django admin configuration for the contact app."""

from django.contrib import admin

from concerto.contact.models import ContactRequest


@admin.register(ContactRequest)
class ContactRequestAdmin(admin.ModelAdmin):
    """Admin interface for contact requests."""

    list_display = ("full_name", "email", "created_at")
    search_fields = ("full_name", "email", "message")
    readonly_fields = ("created_at",)
