"""Booking confirmation notifications."""

import logging
from typing import Protocol

from booking_engine.config import settings
from booking_engine.schemas.booking_schema import Booking
from booking_engine.utils import format_cents

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_confirmation(self, booking: Booking) -> None: ...


class LoggingNotifier:
    """Writes the confirmation message to the log instead of sending it."""

    def __init__(self, business_name: str = "") -> None:
        self.business_name = business_name or settings.business.name
        self.sent: list[str] = []

    def render(self, booking: Booking) -> str:
        return (
            f"{self.business_name}: your booking {booking.id} for "
            f"{booking.starts_at:%A %B %d at %I:%M %p} is confirmed. "
            f"Total {format_cents(booking.quote.total)}."
        )

    def send_confirmation(self, booking: Booking) -> None:
        recipient = booking.guest_email or booking.guest_phone or booking.user_id
        message = self.render(booking)
        self.sent.append(message)
        logger.info("Confirmation to %s: %s", recipient, message)
