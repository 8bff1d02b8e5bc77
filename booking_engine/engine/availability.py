"""
Availability store: the single authority over time-slot state.

Every state change is one conditional UPDATE keyed on the expected prior
state (compare-and-swap in the database), so the outcome of concurrent
claims is decided by the backing store and not by any one process. Expired
holds are treated as open on read (lazy expiry); ``sweep_expired`` reclaims
them in bulk.

Usage:
    store = AvailabilityStore()
    result = store.try_hold("cold_plunge-20261020-0800", "attempt-1", timedelta(minutes=10))
    if result.success:
        store.confirm(result.slot_id, "attempt-1", "BK-1234ABCD")
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from booking_engine.config import settings
from booking_engine.engine.business_calendar import BusinessCalendar
from booking_engine.engine.lifecycle import SLOT_LIFECYCLE, SlotTrigger
from booking_engine.errors import ServiceUnavailable
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import SlotRow
from booking_engine.schemas.slot_schema import (
    ConfirmResult,
    ConfirmStatus,
    HoldResult,
    HoldStatus,
    SlotQuery,
    SlotState,
    TimeSlot,
)
from booking_engine.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

MAX_SUGGESTED_DATES = 3


def slot_id_for(service_id: str, day: date, start) -> str:
    return f"{service_id}-{day:%Y%m%d}-{start:%H%M}"


class AvailabilityStore:
    """Query and reserve time slots with database-arbitrated atomicity."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        calendar: Optional[BusinessCalendar] = None,
        clock: Callable[[], datetime] = utcnow,
        hold_ttl: Optional[timedelta] = None,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self.calendar = calendar or BusinessCalendar()
        self._clock = clock
        self.hold_ttl = hold_ttl or timedelta(minutes=settings.reservation.hold_ttl_minutes)

    def _now(self) -> datetime:
        return to_naive_utc(self._clock())

    def _to_model(self, row: SlotRow, now: datetime) -> TimeSlot:
        state = SlotState(row.state)
        holder_id, expires_at = row.holder_id, row.hold_expires_at
        if state == SlotState.HELD and expires_at is not None and expires_at <= now:
            state, holder_id, expires_at = SlotState.OPEN, None, None
        return TimeSlot(
            id=row.id,
            service_id=row.service_id,
            date=row.slot_date,
            start_time=row.start_time,
            end_time=row.end_time,
            state=state,
            holder_id=holder_id,
            hold_expires_at=expires_at,
            booking_id=row.booking_id,
            version=row.version,
        )

    def _state_in(self, trigger: SlotTrigger):
        return SlotRow.state.in_([s.value for s in SLOT_LIFECYCLE.sources(trigger)])

    # --- Queries ---

    def get_slot(self, slot_id: str) -> Optional[TimeSlot]:
        try:
            with session_scope(self._sessions) as session:
                row = session.get(SlotRow, slot_id)
                return self._to_model(row, self._now()) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}", slot_id=slot_id) from e

    def query_slots(self, service_id: str, day: date) -> SlotQuery:
        """
        Slots for a service-date, filtered to business hours.

        Closed dates return no slots and a ``closure_reason``; an empty list
        with no reason means nothing is configured or everything is taken.
        """
        reason = self.calendar.closure_reason(day)
        if reason is not None:
            return SlotQuery(service_id=service_id, date=day, closure_reason=reason)

        try:
            with session_scope(self._sessions) as session:
                rows = session.scalars(
                    select(SlotRow)
                    .where(SlotRow.service_id == service_id, SlotRow.slot_date == day)
                    .order_by(SlotRow.start_time)
                ).all()
                now = self._now()
                slots = [
                    self._to_model(r, now) for r in rows
                    if self.calendar.within_hours(day, r.start_time, r.end_time)
                ]
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}") from e
        return SlotQuery(service_id=service_id, date=day, slots=slots)

    def suggest_dates(
        self, service_id: str, start: date, limit: int = MAX_SUGGESTED_DATES
    ) -> list[date]:
        """Next dates on or after ``start`` with at least one open slot."""
        results: list[date] = []
        for offset in range(self.calendar.advance_days + 1):
            day = start + timedelta(days=offset)
            if self.query_slots(service_id, day).open_slots:
                results.append(day)
            if len(results) >= limit:
                break
        return results

    # --- Admin ---

    def generate_slots(self, service_id: str, day: date) -> int:
        """Create the day's slots across business hours. Safe to re-run."""
        windows = self.calendar.slot_windows(day)
        if not windows:
            return 0
        try:
            with session_scope(self._sessions) as session:
                existing = set(session.scalars(
                    select(SlotRow.start_time)
                    .where(SlotRow.service_id == service_id, SlotRow.slot_date == day)
                ).all())
                created = 0
                for start, end in windows:
                    if start in existing:
                        continue
                    session.add(SlotRow(
                        id=slot_id_for(service_id, day, start),
                        service_id=service_id,
                        slot_date=day,
                        start_time=start,
                        end_time=end,
                        state=SlotState.OPEN.value,
                        version=0,
                    ))
                    created += 1
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Could not generate slots: {e}") from e
        logger.info("Generated %d slots for %s on %s", created, service_id, day.isoformat())
        return created

    # --- Reservations ---

    def try_hold(
        self, slot_id: str, holder_id: str, ttl: Optional[timedelta] = None
    ) -> HoldResult:
        """
        Claim a slot for ``holder_id`` until ``now + ttl``.

        Succeeds from OPEN, from a lapsed hold, or as a refresh of the
        caller's own hold. Exactly one of any set of concurrent callers wins.
        """
        now = self._now()
        expires_at = now + (ttl or self.hold_ttl)
        claimable = or_(
            SlotRow.state == SlotState.OPEN.value,
            and_(
                SlotRow.state == SlotState.HELD.value,
                or_(SlotRow.hold_expires_at <= now, SlotRow.holder_id == holder_id),
            ),
        )
        try:
            with session_scope(self._sessions) as session:
                result = session.execute(
                    update(SlotRow)
                    .where(SlotRow.id == slot_id, self._state_in(SlotTrigger.HOLD), claimable)
                    .values(
                        state=SLOT_LIFECYCLE.next_state(SlotState.OPEN, SlotTrigger.HOLD).value,
                        holder_id=holder_id,
                        hold_expires_at=expires_at,
                        version=SlotRow.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                won = result.rowcount == 1
                row = session.get(SlotRow, slot_id)
                slot = self._to_model(row, now) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}", slot_id=slot_id) from e

        if won:
            logger.info("Slot %s held by %s until %s", slot_id, holder_id, expires_at.isoformat())
            return HoldResult(status=HoldStatus.HELD, slot_id=slot_id, slot=slot)
        if slot is None:
            return HoldResult(status=HoldStatus.NOT_FOUND, slot_id=slot_id)
        logger.info("Hold on %s refused for %s (state=%s)", slot_id, holder_id, slot.state.value)
        return HoldResult(status=HoldStatus.UNAVAILABLE, slot_id=slot_id, slot=slot)

    def release(self, slot_id: str, holder_id: str) -> bool:
        """Give back a hold. Returns False if ``holder_id`` does not hold it."""
        try:
            with session_scope(self._sessions) as session:
                result = session.execute(
                    update(SlotRow)
                    .where(
                        SlotRow.id == slot_id,
                        self._state_in(SlotTrigger.RELEASE),
                        SlotRow.holder_id == holder_id,
                    )
                    .values(
                        state=SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.RELEASE).value,
                        holder_id=None,
                        hold_expires_at=None,
                        version=SlotRow.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}", slot_id=slot_id) from e
        released = result.rowcount == 1
        if released:
            logger.info("Slot %s released by %s", slot_id, holder_id)
        return released

    def confirm(self, slot_id: str, holder_id: str, booking_id: str) -> ConfirmResult:
        """
        Turn the caller's live hold into a booking.

        Re-confirming with the same ``booking_id`` is a no-op success, so a
        retried confirm can never double-book.
        """
        now = self._now()
        try:
            with session_scope(self._sessions) as session:
                result = session.execute(
                    update(SlotRow)
                    .where(
                        SlotRow.id == slot_id,
                        self._state_in(SlotTrigger.CONFIRM),
                        SlotRow.holder_id == holder_id,
                        SlotRow.hold_expires_at > now,
                    )
                    .values(
                        state=SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.CONFIRM).value,
                        booking_id=booking_id,
                        hold_expires_at=None,
                        version=SlotRow.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                won = result.rowcount == 1
                row = session.get(SlotRow, slot_id)
                if row is None:
                    return ConfirmResult(status=ConfirmStatus.NOT_FOUND, slot_id=slot_id)
                raw_state = SlotState(row.state)
                raw_holder, raw_booking = row.holder_id, row.booking_id
                slot = self._to_model(row, now)
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}", slot_id=slot_id) from e

        if won or (raw_state == SlotState.BOOKED and raw_booking == booking_id):
            logger.info("Slot %s booked as %s", slot_id, booking_id)
            return ConfirmResult(status=ConfirmStatus.CONFIRMED, slot_id=slot_id, slot=slot)
        if raw_state == SlotState.BOOKED:
            status = ConfirmStatus.SLOT_TAKEN
        elif raw_state == SlotState.HELD and raw_holder != holder_id:
            status = ConfirmStatus.NOT_HOLDER
        else:
            status = ConfirmStatus.HOLD_EXPIRED
        logger.info("Confirm of %s by %s failed: %s", slot_id, holder_id, status.value)
        return ConfirmResult(status=status, slot_id=slot_id, slot=slot)

    def release_booked(self, slot_id: str, booking_id: str) -> bool:
        """Free a booked slot when its booking is cancelled."""
        try:
            with session_scope(self._sessions) as session:
                result = session.execute(
                    update(SlotRow)
                    .where(
                        SlotRow.id == slot_id,
                        self._state_in(SlotTrigger.CANCEL),
                        SlotRow.booking_id == booking_id,
                    )
                    .values(
                        state=SLOT_LIFECYCLE.next_state(SlotState.BOOKED, SlotTrigger.CANCEL).value,
                        booking_id=None,
                        holder_id=None,
                        hold_expires_at=None,
                        version=SlotRow.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}", slot_id=slot_id) from e
        return result.rowcount == 1

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Reopen every lapsed hold. Returns how many slots were reclaimed."""
        cutoff = to_naive_utc(now) if now else self._now()
        try:
            with session_scope(self._sessions) as session:
                result = session.execute(
                    update(SlotRow)
                    .where(self._state_in(SlotTrigger.EXPIRE), SlotRow.hold_expires_at <= cutoff)
                    .values(
                        state=SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.EXPIRE).value,
                        holder_id=None,
                        hold_expires_at=None,
                        version=SlotRow.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Availability store unreachable: {e}") from e
        if result.rowcount:
            logger.info("Reclaimed %d expired holds", result.rowcount)
        return result.rowcount
