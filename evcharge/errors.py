"""Domain errors raised by the booking lifecycle and slot ledger.

Each error carries a stable ``code`` and the HTTP status the API maps it to;
``evcharge.main`` renders them as ``{"error": {"code", "message"}}``.
"""


class BookingError(Exception):
    code = "booking_error"
    status_code = 400
    default_message = "Booking operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BookingError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid booking request"


class PaymentFailedError(BookingError):
    code = "payment_failed"
    status_code = 402
    default_message = "Payment failed"


class PermissionDeniedError(BookingError):
    code = "permission_denied"
    status_code = 403
    default_message = "Not allowed for this station"


class NotFoundError(BookingError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class AlreadyVerifiedError(BookingError):
    code = "already_verified"
    status_code = 409
    default_message = "Booking already verified"


class AlreadyExpiredError(BookingError):
    code = "already_expired"
    status_code = 409
    default_message = "Booking already expired"


class BookingStateError(BookingError):
    code = "invalid_state"
    status_code = 409
    default_message = "Booking is not in a valid state for this action"


class NoSlotsAvailableError(BookingError):
    code = "no_slots_available"
    status_code = 409
    default_message = "No slots available at this station"


class StorageError(BookingError):
    code = "storage_error"
    status_code = 503
    default_message = "Temporary storage problem, please try again"
