"""Django admin configuration for the registration app."""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.contrib import admin, messages

from concerto.registration.models import EventProcessingException, Registration, StripeEvent
from concerto.registration.services.reconciliation import ReconciliationService

if TYPE_CHECKING:
    from django.db.models import QuerySet
    from django.http import HttpRequest


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    """Admin interface for registrations.

    Payment fields and the verification code are read-only; status only
    changes through the reconciliation flows or the cancel action, which
    refuses anything that is no longer pending.
    """

    list_display = ("full_name", "email", "amount", "currency", "status", "paid_at", "created_at")
    list_filter = ("status", "event_id")
    search_fields = ("first_name", "last_name", "email", "stripe_checkout_session_id", "stripe_payment_intent_id")
    readonly_fields = (
        "id",
        "user",
        "amount",
        "currency",
        "status",
        "stripe_checkout_session_id",
        "stripe_payment_intent_id",
        "qr_code_data_url",
        "paid_at",
        "created_at",
        "updated_at",
    )
    actions = ("cancel_pending",)

    @admin.action(description="Cancel selected pending registrations")
    def cancel_pending(self, request: HttpRequest, queryset: QuerySet[Registration]) -> None:
        """Cancel each selected registration that is still pending."""
        cancelled = sum(ReconciliationService.cancel_registration(registration) for registration in queryset)
        skipped = queryset.count() - cancelled
        self.message_user(request, f"Cancelled {cancelled} registration(s).", messages.SUCCESS)
        if skipped:
            self.message_user(request, f"Skipped {skipped} registration(s) that were not pending.", messages.WARNING)

    def has_delete_permission(self, request: HttpRequest, obj: Registration | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(StripeEvent)
class StripeEventAdmin(admin.ModelAdmin):
    """Read-only admin for Stripe webhook events."""

    list_display = ("stripe_id", "kind", "processed", "livemode", "created_at")
    list_filter = ("kind", "processed", "livemode")
    search_fields = ("stripe_id", "customer_id")
    readonly_fields = (
        "stripe_id",
        "kind",
        "livemode",
        "payload",
        "customer_id",
        "processed",
        "api_version",
        "created_at",
    )

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: StripeEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: StripeEvent | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(EventProcessingException)
class EventProcessingExceptionAdmin(admin.ModelAdmin):
    """Read-only admin for webhook processing errors."""

    list_display = ("message", "event", "created_at")
    list_filter = ("created_at",)
    search_fields = ("message",)
    readonly_fields = ("event", "data", "message", "traceback", "created_at")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: EventProcessingException | None = None) -> bool:  # noqa: ARG002, D102
        return False
