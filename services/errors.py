class BookingError(Exception):
    """Base class for every refusal the booking core can return."""

    code = "booking_error"
    http_status = 400
    default_message = "Booking request rejected"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class InvalidDateError(BookingError):
    code = "invalid_date"
    default_message = "Cannot book a date in the past"


class InvalidSlotError(BookingError):
    code = "invalid_slot"
    default_message = "Time slot is not offered for this activity"


class SlotFullError(BookingError):
    code = "slot_full"
    http_status = 409
    default_message = "Slot is fully booked"


class NotFoundError(BookingError):
    code = "not_found"
    http_status = 404
    default_message = "Not found"


class ForbiddenError(BookingError):
    code = "forbidden"
    http_status = 403
    default_message = "Forbidden"


class AlreadyCanceledError(BookingError):
    code = "already_canceled"
    http_status = 409
    default_message = "Booking is already canceled"


class PastBookingError(BookingError):
    code = "past_booking"
    default_message = "Cannot change a past booking"


class StoreUnavailableError(BookingError):
    code = "store_unavailable"
    http_status = 503
    default_message = "Booking store unavailable"
