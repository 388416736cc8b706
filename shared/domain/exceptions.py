"""
Error taxonomy shared by the booking and finance contexts.

Every error raised on purpose by the core derives from RentalError so the
surrounding application can map the whole family in one place. Errors carry
keyword context (booking id, status, amounts) in ``context``.
"""


class RentalError(Exception):
    """Base class for all errors raised by the rental core."""

    def __init__(self, message: str = '', **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        return self.message


class ValidationError(RentalError, ValueError):
    """Malformed or missing input. The caller must fix the request."""


class NotFound(RentalError, LookupError):
    """Referenced booking, payment, vehicle or driver does not exist."""


class InvalidStateTransition(RentalError):
    """Operation attempted from a state that does not allow it.

    The caller should re-fetch the current state before retrying.
    """


class ConflictError(RentalError):
    """Vehicle is not available for the requested interval."""


class RefundExceedsAvailable(RentalError):
    """Requested refund is larger than the refundable amount."""


class DriverUnavailable(RentalError):
    """Driver cannot be assigned right now."""


class PaymentError(RentalError):
    """Base class for gateway level failures absorbed by the fallback chain."""

    def __init__(self, message: str = '', gateway: str = '', response: dict | None = None, **context):
        super().__init__(message, gateway=gateway, **context)
        self.gateway = gateway
        self.response = response or {}


class PaymentDeclined(PaymentError):
    """Gateway processed the request and declined it."""


class ExternalServiceError(PaymentError):
    """Gateway timed out, was unreachable or answered with garbage."""


class StorageError(RentalError):
    """Persistence failed. Always fatal, always surfaced."""
