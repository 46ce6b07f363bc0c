"""URL configuration for the portraits app.

Mount these in the host project::

    urlpatterns = [
        path("api/portraits/", include("concerto.portraits.urls")),
    ]
"""

from django.urls import path

from concerto.portraits.views import (
    ProjectCheckoutView,
    ProjectDetailView,
    ProjectGenerateView,
    ProjectListView,
)

app_name = "portraits"

urlpatterns = [
    path("", ProjectListView.as_view(), name="project-list"),
    path("<uuid:pk>/", ProjectDetailView.as_view(), name="project-detail"),
    path("<uuid:pk>/checkout/", ProjectCheckoutView.as_view(), name="project-checkout"),
    path("<uuid:pk>/generate/", ProjectGenerateView.as_view(), name="project-generate"),
]
