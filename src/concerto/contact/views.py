"""Views for the contact app."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.http import JsonResponse

from concerto.contact.forms import ContactRequestForm, normalize_keys
from concerto.contact.models import ContactRequest
from concerto.exceptions import DuplicateContact, ValidationFailed
from concerto.http import PublicApiView, read_json

if TYPE_CHECKING:
    from django.http import HttpRequest

logger = logging.getLogger(__name__)


class ContactRequestView(PublicApiView):
    """Records a contact request from an anonymous visitor."""

    required_feature = "contact"
    http_method_names = ["post"]

    def post(self, request: HttpRequest) -> JsonResponse:
        """Return ``{"success": true}`` once the request is stored.

        Raises:
            ValidationFailed: If the name or email is missing or invalid.
            DuplicateContact: If a request under this full name exists.
        """
        form = ContactRequestForm(normalize_keys(read_json(request)))
        if not form.is_valid():
            raise ValidationFailed(
                "Please provide your name and email.",
                errors={field: list(errors) for field, errors in form.errors.items()},
            )

        try:
            with transaction.atomic():
                contact = ContactRequest.objects.create(**form.cleaned_data)
        except IntegrityError as exc:
            raise DuplicateContact from exc

        logger.info("Contact request %s recorded", contact.pk)
        return JsonResponse({"success": True})
