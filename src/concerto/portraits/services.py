"""Business logic for portrait projects.

Owns the project lifecycle: upload, paying for a generation through Stripe
Checkout, running the generation and deleting the project with its files.
Generation claims the project with a conditional PENDING -> PROCESSING
update and puts it back to PENDING when anything fails, so a paid project
can always be retried.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import uuid
from typing import TYPE_CHECKING

import stripe
from django.core.exceptions import ValidationError
from django.core.files.base import ContentFile

from concerto.exceptions import (
    GenerationInProgress,
    PaymentGatewayError,
    PaymentRequired,
    ProjectForbidden,
    ProjectNotFound,
    UnrecognizedOutputError,
)
from concerto.portraits.inference import ReplicateClient, decode_output
from concerto.portraits.models import Project
from concerto.registration.services.checkout import CheckoutRedirect, checkout_idempotency_key, dashboard_url
from concerto.registration.stripe_client import StripeClient
from concerto.settings import require_settings

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser, AnonymousUser
    from django.core.files.uploadedfile import UploadedFile

logger = logging.getLogger(__name__)

PORTRAIT_CHECKOUT_SETTINGS = ("stripe.secret_key", "site_url")
GENERATION_SETTINGS = ("portraits.replicate_api_token",)

DEFAULT_OUTPUT_EXTENSION = ".png"


def image_data_url(project: Project) -> str:
    """Read the project's input image from storage as a ``data:`` URL."""
    name = project.input_image.name
    content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    with project.input_image.open("rb") as handle:
        encoded = base64.b64encode(handle.read()).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def _output_extension(content_type: str) -> str:
    if content_type == "image/jpeg":
        return ".jpg"
    return mimetypes.guess_extension(content_type) or DEFAULT_OUTPUT_EXTENSION


def _read_data_url(url: str) -> tuple[bytes, str]:
    header, _, data = url.partition(",")
    content_type = header.removeprefix("data:").split(";")[0] or "image/png"
    if ";base64" not in header:
        raise UnrecognizedOutputError
    try:
        return base64.b64decode(data, validate=True), content_type
    except ValueError as exc:
        raise UnrecognizedOutputError from exc


class ProjectService:
    """Stateless service for portrait project operations."""

    @staticmethod
    def create_project(user: AbstractBaseUser, image: UploadedFile, prompt: str = "") -> Project:
        """Store an uploaded photo as a new unpaid project.

        Args:
            user: The owner.
            image: The validated upload.
            prompt: Optional prompt overriding the configured default.

        Returns:
            The saved project.
        """
        project = Project(user=user, prompt=prompt.strip())
        project.input_image.save(f"{uuid.uuid4()}-{image.name}", image, save=False)
        project.save()
        logger.info("Portrait project %s created for user %s", project.pk, user.pk)
        return project

    @staticmethod
    def get_owned_project(project_id: object, user: AbstractBaseUser | AnonymousUser) -> Project:
        """Load a project and check that *user* owns it.

        Raises:
            ProjectNotFound: If no project has this id.
            ProjectForbidden: If the project belongs to someone else.
        """
        try:
            project = Project.objects.get(pk=project_id)
        except (Project.DoesNotExist, ValidationError, ValueError) as exc:
            raise ProjectNotFound from exc
        if not user.is_authenticated or project.user_id != user.pk:
            raise ProjectForbidden
        return project

    @staticmethod
    def start_checkout(project_id: object, user: AbstractBaseUser | AnonymousUser) -> CheckoutRedirect:
        """Open a Checkout session paying for the project's generation.

        The session metadata carries ``project_id``; the webhook hands such
        sessions to :func:`concerto.portraits.signals.mark_project_paid`.

        Raises:
            ImproperlyConfigured: If Stripe or the site URL is not configured.
            ProjectNotFound: If the project does not exist.
            ProjectForbidden: If the caller does not own it.
            PaymentGatewayError: If Stripe fails.
        """
        config = require_settings(*PORTRAIT_CHECKOUT_SETTINGS)
        project = ProjectService.get_owned_project(project_id, user)
        if project.payment_status == Project.PaymentStatus.PAID:
            return CheckoutRedirect(session_id=project.stripe_checkout_session_id, url=None)

        success_url = dashboard_url(status="confirmed", project=project.pk)
        cancel_url = dashboard_url(status="cancelled", project=project.pk)
        try:
            session = StripeClient().create_checkout_session(
                amount=config.portraits.price,
                currency=config.currency,
                product_name="Portrait IA",
                product_description=config.event.title,
                customer_email=getattr(user, "email", "") or "",
                metadata={"project_id": str(project.pk)},
                success_url=success_url,
                cancel_url=cancel_url,
                idempotency_key=checkout_idempotency_key("project", project),
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe refused a checkout session for project %s", project.pk)
            raise PaymentGatewayError from exc

        project.stripe_checkout_session_id = session.id
        project.save(update_fields=["stripe_checkout_session_id", "updated_at"])
        logger.info("Project %s checkout session %s opened", project.pk, session.id)
        return CheckoutRedirect(session_id=session.id, url=session.url)

    @staticmethod
    def generate(project_id: object, user: AbstractBaseUser | AnonymousUser) -> Project:
        """Run the portrait generation for a paid project.

        A project that already completed is returned unchanged.

        Raises:
            ImproperlyConfigured: If no inference token is configured.
            ProjectNotFound: If the project does not exist.
            ProjectForbidden: If the caller does not own it.
            PaymentRequired: If the project has not been paid for.
            GenerationInProgress: If another generation holds the project.
            InferenceError: If the model fails or returns an unusable output;
                the project is back to PENDING.
        """
        config = require_settings(*GENERATION_SETTINGS).portraits
        project = ProjectService.get_owned_project(project_id, user)

        if project.payment_status != Project.PaymentStatus.PAID:
            raise PaymentRequired
        if project.status == Project.Status.COMPLETED and project.output_image:
            return project

        claimed = (
            Project.objects.filter(pk=project.pk, payment_status=Project.PaymentStatus.PAID)
            .exclude(status=Project.Status.PROCESSING)
            .update(status=Project.Status.PROCESSING)
        )
        if claimed != 1:
            raise GenerationInProgress

        try:
            client = ReplicateClient()
            output = client.run(
                config.replicate_model,
                {"prompt": project.prompt or config.default_prompt, "image_input": [image_data_url(project)]},
            )
            url = decode_output(output)
            if url.startswith("data:"):
                content, content_type = _read_data_url(url)
            else:
                content, content_type = client.download(url)
            project.output_image.save(
                f"{project.pk}{_output_extension(content_type)}",
                ContentFile(content),
                save=False,
            )
        except Exception:
            Project.objects.filter(pk=project.pk, status=Project.Status.PROCESSING).update(
                status=Project.Status.PENDING,
            )
            logger.warning("Generation failed for project %s, status reset to pending", project.pk)
            raise

        project.status = Project.Status.COMPLETED
        project.save(update_fields=["output_image", "status", "updated_at"])
        logger.info("Portrait generated for project %s", project.pk)
        return project

    @staticmethod
    def delete_project(project_id: object, user: AbstractBaseUser | AnonymousUser) -> list[str]:
        """Delete a project and its stored images.

        Storage failures do not prevent deleting the row; they are returned
        as warnings instead.

        Raises:
            ProjectNotFound: If the project does not exist.
            ProjectForbidden: If the caller does not own it.

        Returns:
            Human-readable warnings for files that could not be removed.
        """
        project = ProjectService.get_owned_project(project_id, user)
        warnings: list[str] = []
        for field in (project.input_image, project.output_image):
            if not field:
                continue
            name = field.name
            try:
                field.delete(save=False)
            except OSError:
                logger.warning("Could not delete stored file %s for project %s", name, project.pk, exc_info=True)
                warnings.append(f"Could not delete {name}.")
        project.delete()
        logger.info("Project %s deleted", project_id)
        return warnings

