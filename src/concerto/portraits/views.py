"""Views for the portraits app.

JSON endpoints to upload a photo, list the caller's projects, pay for a
generation, run it and delete a project.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.http import JsonResponse

from concerto.exceptions import ValidationFailed
from concerto.http import ApiView
from concerto.portraits.forms import PortraitUploadForm
from concerto.portraits.models import Project
from concerto.portraits.services import ProjectService

if TYPE_CHECKING:
    from uuid import UUID

    from django.http import HttpRequest


def serialize_project(project: Project) -> dict[str, Any]:
    """Return the JSON representation of a project for its owner."""
    return {
        "id": str(project.pk),
        "status": project.status,
        "paymentStatus": project.payment_status,
        "prompt": project.prompt,
        "inputImageUrl": project.input_image.url if project.input_image else None,
        "outputImageUrl": project.output_image.url if project.output_image else None,
        "createdAt": project.created_at.isoformat(),
        "updatedAt": project.updated_at.isoformat(),
    }


class ProjectListView(ApiView):
    """Lists the caller's projects and accepts new uploads."""

    required_feature = "portraits"
    http_method_names = ["get", "post"]

    def get(self, request: HttpRequest) -> JsonResponse:
        """Return ``{"projects": [...]}``, newest first."""
        projects = Project.objects.filter(user=request.user).order_by("-created_at")
        return JsonResponse({"projects": [serialize_project(p) for p in projects]})

    def post(self, request: HttpRequest) -> JsonResponse:
        """Store a multipart upload as a new project (201)."""
        form = PortraitUploadForm(request.POST, request.FILES)
        if not form.is_valid():
            raise ValidationFailed(errors={field: list(errors) for field, errors in form.errors.items()})
        project = ProjectService.create_project(
            request.user,
            form.cleaned_data["image"],
            form.cleaned_data.get("prompt") or "",
        )
        return JsonResponse({"project": serialize_project(project)}, status=201)


class ProjectDetailView(ApiView):
    """Deletes a project together with its stored images."""

    required_feature = "portraits"
    http_method_names = ["delete"]

    def delete(self, request: HttpRequest, pk: UUID) -> JsonResponse:
        """Return ``{"deleted": true, "warnings": [...]}``."""
        warnings = ProjectService.delete_project(pk, request.user)
        return JsonResponse({"deleted": True, "warnings": warnings})


class ProjectCheckoutView(ApiView):
    """Opens a Checkout session paying for a project's generation."""

    required_feature = "portraits"
    http_method_names = ["post"]

    def post(self, request: HttpRequest, pk: UUID) -> JsonResponse:
        """Return ``{"sessionId", "sessionUrl"}``."""
        redirect = ProjectService.start_checkout(pk, request.user)
        return JsonResponse({"sessionId": redirect.session_id, "sessionUrl": redirect.url})


class ProjectGenerateView(ApiView):
    """Runs the generation for a paid project."""

    required_feature = "portraits"
    http_method_names = ["post"]

    def post(self, request: HttpRequest, pk: UUID) -> JsonResponse:
        """Return the completed project."""
        project = ProjectService.generate(pk, request.user)
        return JsonResponse({"project": serialize_project(project)})
