"""
Slot reservation engine.

Coordinates hold -> confirm on top of the availability store and turns
store results into booking errors. Contention is answered immediately:
the engine never queues or retries a lost claim, that is the caller's call.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from booking_engine.engine.availability import AvailabilityStore
from booking_engine.errors import (
    HoldExpired,
    NotHolder,
    SlotTaken,
    SlotUnavailable,
    ValidationError,
)
from booking_engine.schemas.slot_schema import ConfirmStatus, HoldStatus, TimeSlot
from booking_engine.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class ReservationEngine:
    def __init__(
        self,
        store: AvailabilityStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self._clock = clock
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def hold(self, slot_id: str, holder_id: str, ttl: Optional[timedelta] = None) -> TimeSlot:
        """
        Reserve a slot for ``holder_id``.

        Raises:
            ValidationError: The slot does not exist.
            SlotUnavailable: Someone else holds or booked it.
        """
        result = self.store.try_hold(slot_id, holder_id, ttl)
        if result.status == HoldStatus.NOT_FOUND:
            raise ValidationError(f"Unknown time slot: {slot_id}", field="slot_id")
        if result.status == HoldStatus.UNAVAILABLE:
            raise SlotUnavailable(
                f"Time slot {slot_id} is no longer available",
                slot_id=slot_id, holder_id=holder_id,
            )
        return result.slot

    def confirm(
        self,
        slot_id: str,
        holder_id: str,
        booking_id: str,
        hold_expires_at: Optional[datetime] = None,
    ) -> TimeSlot:
        """
        Book a held slot.

        ``hold_expires_at`` is the expiry the caller was given when it took
        the hold; if that has passed and someone else now holds the slot,
        the caller hears HoldExpired rather than NotHolder.
        """
        result = self.store.confirm(slot_id, holder_id, booking_id)
        context = {"slot_id": slot_id, "holder_id": holder_id, "booking_id": booking_id}

        if result.status == ConfirmStatus.CONFIRMED:
            return result.slot
        if result.status == ConfirmStatus.NOT_FOUND:
            raise ValidationError(f"Unknown time slot: {slot_id}", field="slot_id")
        if result.status == ConfirmStatus.SLOT_TAKEN:
            raise SlotTaken(f"Time slot {slot_id} is already booked", **context)
        if result.status == ConfirmStatus.NOT_HOLDER:
            lapsed = (
                hold_expires_at is not None
                and to_naive_utc(hold_expires_at) <= to_naive_utc(self._clock())
            )
            if not lapsed:
                raise NotHolder(f"Time slot {slot_id} is held by someone else", **context)
        raise HoldExpired(f"Hold on time slot {slot_id} expired", **context)

    def release(self, slot_id: str, holder_id: str) -> bool:
        return self.store.release(slot_id, holder_id)

    def free_booked(self, slot_id: str, booking_id: str) -> bool:
        freed = self.store.release_booked(slot_id, booking_id)
        if not freed:
            logger.warning("Slot %s was not booked as %s; nothing to free", slot_id, booking_id)
        return freed

    def sweep(self) -> int:
        return self.store.sweep_expired(self._clock())

    def start_sweeper(self, interval_sec: float = 60.0) -> threading.Thread:
        """Reclaim expired holds on a daemon thread until ``stop_sweeper``."""
        if self._sweeper and self._sweeper.is_alive():
            return self._sweeper
        self._stop.clear()

        def _run() -> None:
            while not self._stop.wait(interval_sec):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Expired-hold sweep failed; will retry next interval")

        self._sweeper = threading.Thread(target=_run, name="hold-sweeper", daemon=True)
        self._sweeper.start()
        return self._sweeper

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=5)
