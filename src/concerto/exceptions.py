"""Domain errors raised by concerto services.

Every error carries a human-readable ``message`` and the HTTP
``status_code`` the JSON API answers with.  Services raise these; the
:class:`~concerto.http.ApiView` boundary turns them into responses.
"""


class ConcertoError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 400
    default_message: str = "Invalid request."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# -- 400 ---------------------------------------------------------------------


class ValidationFailed(ConcertoError):
    """Request input failed form validation."""

    default_message = "Invalid data."

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class InvalidAmount(ConcertoError):
    """The amount is not positive or is under the gateway minimum."""

    default_message = "Invalid amount."


class MissingContactEmail(ConcertoError):
    """The registration has no email address to send the ticket to."""

    default_message = "No email address is associated with this registration."


# -- 404 / 403 ---------------------------------------------------------------


class NotFoundError(ConcertoError):
    """The requested resource does not exist."""

    status_code = 404
    default_message = "Resource not found."


class RegistrationNotFound(NotFoundError):
    default_message = "Registration not found."


class ProjectNotFound(NotFoundError):
    default_message = "Project not found."


class PermissionDeniedError(ConcertoError):
    """The resource exists but belongs to another user."""

    status_code = 403
    default_message = "Access denied."


class RegistrationForbidden(PermissionDeniedError):
    default_message = "This registration does not belong to you."


class ProjectForbidden(PermissionDeniedError):
    default_message = "This project does not belong to you."


# -- state conflicts ---------------------------------------------------------


class StateConflictError(ConcertoError):
    """The operation is not allowed in the resource's current state."""

    status_code = 409
    default_message = "Operation not allowed in the current state."


class AlreadyConfirmed(StateConflictError):
    status_code = 400
    default_message = "This registration is already confirmed."


class RegistrationCancelled(StateConflictError):
    status_code = 400
    default_message = "This registration has been cancelled."


class MissingCheckoutSession(StateConflictError):
    status_code = 400
    default_message = "No checkout session is associated with this registration."


class PaymentNotConfirmed(StateConflictError):
    status_code = 400
    default_message = "The payment is not confirmed yet."


class PaymentRequired(StateConflictError):
    status_code = 402
    default_message = "Payment is required before generating a portrait."


class GenerationInProgress(StateConflictError):
    default_message = "A generation is already in progress for this project."


class DuplicateContact(StateConflictError):
    default_message = "This person is already registered."


# -- upstream services -------------------------------------------------------


class ExternalServiceError(ConcertoError):
    """An upstream service failed or answered something unusable."""

    status_code = 502
    default_message = "An external service is unavailable."


class PaymentGatewayError(ExternalServiceError):
    default_message = "The payment service is unavailable."


class InferenceError(ExternalServiceError):
    default_message = "Portrait generation failed."


class UnrecognizedOutputError(InferenceError):
    """The inference API returned an output shape the decoder does not know."""

    default_message = "Unexpected response from the generation service."
