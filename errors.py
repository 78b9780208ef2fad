"""
Error taxonomy shared by the catalog, order and notification layers.

Services raise these internally and convert them into an OperationResult at
their public boundary; the HTTP layer maps ``error_type`` to a status code.
"""


class PharmacyError(Exception):
    """Base class; ``message`` is shown to the user verbatim."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def error_type(self) -> str:
        return type(self).__name__


class ValidationError(PharmacyError):
    pass


class InsufficientStockError(ValidationError):
    pass


class InvalidTransitionError(ValidationError):
    pass


class NotFoundError(PharmacyError):
    pass


class InvalidOtpError(PharmacyError):
    pass


class AuthorizationError(PharmacyError):
    pass


class PersistenceError(PharmacyError):
    pass


class NotificationError(PharmacyError):
    """Raised by the notifier. Callers log it and carry on."""


HTTP_STATUS = {
    "ValidationError": 400,
    "InsufficientStockError": 400,
    "InvalidTransitionError": 400,
    "InvalidOtpError": 400,
    "AuthorizationError": 403,
    "NotFoundError": 404,
    "PersistenceError": 500,
}
