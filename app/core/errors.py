# app/core/errors.py
"""
Domain errors raised by the booking services.

Each error carries the HTTP status the routers surface it with. Anything
that is not a ``BookingError`` is an infrastructure failure and ends up as
a generic 500.
"""

from fastapi import status as http_status


class BookingError(Exception):
    status_code = http_status.HTTP_400_BAD_REQUEST
    default_message = "Booking request rejected"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BookingNotFound(BookingError):
    status_code = http_status.HTTP_404_NOT_FOUND
    default_message = "Booking not found"


class ProviderNotFound(BookingError):
    status_code = http_status.HTTP_404_NOT_FOUND
    default_message = "Barber not found"


class NotAuthorized(BookingError):
    status_code = http_status.HTTP_401_UNAUTHORIZED
    default_message = "User not authorized"


class CapacityExceeded(BookingError):
    default_message = "This barber is fully booked for today."


class NoDisplaceableCandidate(BookingError):
    default_message = "This barber is fully booked with high priority appointments."


class BlockedByHigherPriorityUnpaid(BookingError):
    default_message = "A higher priority appointment has pending payments."


class InvalidOtp(BookingError):
    default_message = "Invalid OTP"


class AlreadySettled(BookingError):
    default_message = "Booking cannot be cancelled as payment is already completed."


class PaymentNotPending(BookingError):
    default_message = "Booking is not in pending payment state"


class InvalidTransition(BookingError):
    default_message = "Booking status does not allow this action"


class SlotBusy(BookingError):
    status_code = http_status.HTTP_409_CONFLICT
    default_message = "Another booking change for this barber and day is in progress. Please try again."


class LedgerConflict(BookingError):
    status_code = http_status.HTTP_409_CONFLICT
    default_message = "The booking was changed by another request. Please refresh and try again."


class InvalidBookingData(BookingError):
    default_message = "Invalid booking data"
