"""Typed failures raised by the services and mapped to HTTP responses in main."""


class AppError(Exception):
    """Base class for every user-visible failure."""

    status_code = 500
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AppError):
    status_code = 404
    kind = "not_found"


class InvalidStateError(AppError):
    status_code = 400
    kind = "invalid_state"


class ConflictError(AppError):
    status_code = 409
    kind = "conflict"


class PayloadValidationError(AppError):
    """Malformed payload that passed schema checks but breaks a domain rule."""

    status_code = 422
    kind = "validation_error"


class DeliveryError(AppError):
    """The messaging collaborator rejected an immediate send."""

    status_code = 502
    kind = "delivery_failed"


class SecretNotConfiguredError(AppError):
    status_code = 500
    kind = "secret_not_configured"


class SecretDecryptError(AppError):
    status_code = 500
    kind = "secret_decrypt_failed"
