"""JSON API plumbing shared by the concerto apps.

:class:`ApiView` is the outermost error boundary for every JSON endpoint:
domain errors become their own status and message, anything unexpected is
logged and answered with a generic 500 so internal details never leak.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import Http404, JsonResponse
from django.views import View

from concerto.exceptions import ConcertoError, ValidationFailed
from concerto.features import FeatureRequiredMixin

if TYPE_CHECKING:
    from django.http import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."


def error_response(message: str, status: int, **extra: Any) -> JsonResponse:  # noqa: ANN401
    """Build the JSON error body used across the API.

    Args:
        message: Human-readable message shown to the caller.
        status: HTTP status code.
        **extra: Additional keys merged into the body.

    Returns:
        A ``JsonResponse`` of the form ``{"error": message, ...}``.
    """
    return JsonResponse({"error": message, **extra}, status=status)


def read_json(request: HttpRequest) -> dict[str, Any]:
    """Decode the request body as a JSON object.

    Args:
        request: The incoming request.

    Returns:
        The decoded object, or an empty dict when the body is empty.

    Raises:
        ValidationFailed: If the body is not valid JSON or not an object.
    """
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationFailed("Request body must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object.")
    return data


class JsonErrorMixin:
    """Map exceptions raised while dispatching onto JSON error responses."""

    def dispatch(self, request: HttpRequest, *args: Any, **kwargs: Any) -> HttpResponse:  # noqa: ANN401
        """Run the view, mapping raised errors onto JSON responses."""
        try:
            return super().dispatch(request, *args, **kwargs)  # type: ignore[misc]
        except ValidationFailed as exc:
            return error_response(exc.message, status=exc.status_code, fields=exc.errors)
        except ConcertoError as exc:
            if exc.status_code >= 500:  # noqa: PLR2004
                logger.warning("Upstream failure in %s: %s", type(self).__name__, exc.message)
            return error_response(exc.message, status=exc.status_code)
        except Http404 as exc:
            return error_response(str(exc) or "Not found.", status=404)
        except Exception:
            logger.exception("Unhandled error while handling %s", request.path)
            return error_response(GENERIC_ERROR_MESSAGE, status=500)


class PublicApiView(JsonErrorMixin, FeatureRequiredMixin, View):
    """JSON endpoint open to anonymous callers."""


class ApiView(JsonErrorMixin, LoginRequiredMixin, FeatureRequiredMixin, View):
    """Authenticated JSON endpoint with uniform error handling.

    Subclasses implement the usual ``get``/``post``/``delete`` handlers and
    raise :class:`~concerto.exceptions.ConcertoError` subclasses for
    expected failures.  Unauthenticated callers get a JSON 401.
    """

    def handle_no_permission(self) -> HttpResponse:
        """Answer unauthenticated requests with a JSON 401."""
        return error_response("Authentication required.", status=401)
