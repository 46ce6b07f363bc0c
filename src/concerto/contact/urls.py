"""URL configuration for the contact app.

Mount these in the host project::

    urlpatterns = [
        path("api/contact/", include("concerto.contact.urls")),
    ]
"""

from django.urls import path

from concerto.contact.views import ContactRequestView

app_name = "contact"

urlpatterns = [
    path("", ContactRequestView.as_view(), name="contact-request"),
]
