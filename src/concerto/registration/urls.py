"""URL configuration for the registration app.

Includes checkout, the caller's registrations, the on-demand ticket actions
and the Stripe webhook endpoint. Mount these in the host project::

    urlpatterns = [
        path("api/registration/", include("concerto.registration.urls")),
    ]
"""

from django.urls import path

from concerto.registration.views import (
    CheckoutView,
    RegistrationListView,
    ResumeCheckoutView,
    SendTicketView,
    TicketDownloadView,
)
from concerto.registration.webhooks import stripe_webhook

app_name = "registration"

urlpatterns = [
    path("", RegistrationListView.as_view(), name="registration-list"),
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("<uuid:pk>/send-ticket/", SendTicketView.as_view(), name="send-ticket"),
    path("<uuid:pk>/ticket/", TicketDownloadView.as_view(), name="ticket-download"),
    path("<uuid:pk>/resume/", ResumeCheckoutView.as_view(), name="resume-checkout"),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
