"""Exception taxonomy shared by the store, the pipeline and the HTTP layer."""

from typing import List, Optional


class BillingServiceError(Exception):
    """Base error; carries the HTTP status the API layer answers with."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BillingServiceError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message)


class InvalidInputError(BillingServiceError, ValueError):
    status_code = 400
    default_message = "Invalid input"


class AuthError(BillingServiceError):
    status_code = 401
    default_message = "Could not validate credentials"


class PermissionDeniedError(BillingServiceError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFoundError(BillingServiceError):
    status_code = 404
    default_message = "Resource not found"


class DuplicateKeyError(BillingServiceError):
    status_code = 409
    default_message = "A record with this key already exists"


class InvalidTransitionError(BillingServiceError):
    status_code = 409
    default_message = "Invalid status transition"


class RenderError(BillingServiceError):
    default_message = "PDF generation failed"


class DeliveryError(BillingServiceError):
    default_message = "Email delivery failed"
