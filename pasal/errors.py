"""Exceptions raised by the service layer.

Each exception carries the HTTP status the API answers with, so views can
let them propagate to the error handler registered in ``create_app``.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ServiceError):
    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class GatewayError(ServiceError):
    """The payment gateway rejected or could not confirm a payload."""

    status_code = 500


class CancellationError(ServiceError):
    status_code = 500


class DeliveryError(ServiceError):
    status_code = 502
