"""
Booking error taxonomy.

Every failure path of the booking pipeline maps to exactly one of these
kinds. Errors raised after a side effect (hold, charge, persisted booking)
carry the identifiers support needs to reconcile by hand in ``context``.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    SLOT_UNAVAILABLE = "slot_unavailable"
    HOLD_EXPIRED = "hold_expired"
    NOT_HOLDER = "not_holder"
    SLOT_TAKEN = "slot_taken"
    PRICE_DRIFT = "price_drift"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_BOOKING_MISMATCH = "payment_booking_mismatch"
    CREDIT_INSUFFICIENT = "credit_insufficient"
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_TRANSITION = "invalid_transition"


class BookingError(Exception):
    """Base class for all booking engine errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    user_message: str = "Something went wrong with your booking."

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "context": dict(self.context),
        }


class ValidationError(BookingError):
    """Malformed or out-of-range request, rejected before any side effect."""

    kind = ErrorKind.VALIDATION
    user_message = "Please check your booking details."

    def __init__(self, message: str, field: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


class SlotUnavailable(BookingError):
    kind = ErrorKind.SLOT_UNAVAILABLE
    user_message = "That time slot is no longer available. Please choose a different time."


class HoldExpired(BookingError):
    kind = ErrorKind.HOLD_EXPIRED
    user_message = "Your reservation of this time slot expired. Please choose a time again."


class NotHolder(BookingError):
    kind = ErrorKind.NOT_HOLDER
    user_message = "That time slot is reserved by someone else. Please choose a different time."


class SlotTaken(BookingError):
    kind = ErrorKind.SLOT_TAKEN
    user_message = "That time slot is no longer available. Please choose a different time."


class PriceDrift(BookingError):
    """The quoted price is stale; the customer must accept the new total."""

    kind = ErrorKind.PRICE_DRIFT
    user_message = "The price has been updated. Please review and accept the new price."

    def __init__(self, message: str, current_quote: Any = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.current_quote = current_quote


class PaymentDeclined(BookingError):
    kind = ErrorKind.PAYMENT_DECLINED
    user_message = "Your payment was declined. No booking was made."


class PaymentBookingMismatch(BookingError):
    """A charge succeeded but the booking could not be recorded."""

    kind = ErrorKind.PAYMENT_BOOKING_MISMATCH
    user_message = (
        "Payment successful but booking failed. Our team has been notified; "
        "please contact support with your reference."
    )


class CreditInsufficient(BookingError):
    kind = ErrorKind.CREDIT_INSUFFICIENT
    user_message = "Your credit balance is too low for this booking."


class Timeout(BookingError):
    """An external collaborator exceeded its time bound."""

    kind = ErrorKind.TIMEOUT
    user_message = "This is taking longer than expected. Please try again."


class ServiceUnavailable(BookingError):
    """The backing store or a gateway is down."""

    kind = ErrorKind.SERVICE_UNAVAILABLE
    user_message = "We can't take bookings right now. Please try again later."


class InvalidTransitionError(BookingError):
    """Raised when a lifecycle transition is not valid from the current state."""

    kind = ErrorKind.INVALID_TRANSITION
    user_message = "This booking can't be changed that way."
