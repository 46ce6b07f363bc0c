"""Django admin configuration for the portraits app."""

from django.contrib import admin

from concerto.portraits.models import Project


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    """Admin interface for portrait projects."""

    list_display = ("id", "user", "status", "payment_status", "created_at")
    list_filter = ("status", "payment_status")
    search_fields = ("id", "user__username", "user__email", "stripe_checkout_session_id")
    readonly_fields = ("id", "payment_status", "stripe_checkout_session_id", "created_at", "updated_at")
    raw_id_fields = ("user",)
