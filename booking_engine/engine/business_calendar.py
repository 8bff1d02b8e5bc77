"""Business hours, holiday closures, and the booking window."""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from booking_engine.config import BusinessConfig, settings
from booking_engine.errors import ValidationError
from booking_engine.schemas.slot_schema import ClosureReason

logger = logging.getLogger(__name__)

WeeklyHours = dict[int, Optional[tuple[time, time]]]


class BusinessCalendar:
    """
    Answers "is the business open" questions in business-local wall time.

    Slot dates and start times are local; ``now`` values passed in are
    timezone-aware UTC and converted here.
    """

    def __init__(
        self,
        weekly_hours: Optional[WeeklyHours] = None,
        holidays: Optional[frozenset[date]] = None,
        tz: Optional[ZoneInfo] = None,
        slot_length_minutes: Optional[int] = None,
        advance_days: Optional[int] = None,
        config: Optional[BusinessConfig] = None,
    ) -> None:
        config = config or settings.business
        self.weekly_hours = weekly_hours if weekly_hours is not None else config.weekly_hours
        self.holidays = holidays if holidays is not None else config.holiday_dates
        self.tz = tz or config.tz
        self.slot_length = timedelta(
            minutes=slot_length_minutes or config.slot_length_minutes
        )
        self.advance_days = advance_days or config.booking_advance_days

    def closure_reason(self, day: date) -> Optional[ClosureReason]:
        if day in self.holidays:
            return ClosureReason.HOLIDAY
        if self.weekly_hours.get(day.weekday()) is None:
            return ClosureReason.CLOSED_DAY
        return None

    def hours_for(self, day: date) -> Optional[tuple[time, time]]:
        if self.closure_reason(day) is not None:
            return None
        return self.weekly_hours[day.weekday()]

    def within_hours(self, day: date, start: time, end: time) -> bool:
        hours = self.hours_for(day)
        if hours is None:
            return False
        opens, closes = hours
        return opens <= start and end <= closes and start < end

    def slot_windows(self, day: date) -> list[tuple[time, time]]:
        """Back-to-back windows of ``slot_length`` that fit in the day's hours."""
        hours = self.hours_for(day)
        if hours is None:
            return []
        opens, closes = hours
        cursor = datetime.combine(day, opens)
        end_of_day = datetime.combine(day, closes)
        windows = []
        while cursor + self.slot_length <= end_of_day:
            windows.append((cursor.time(), (cursor + self.slot_length).time()))
            cursor += self.slot_length
        return windows

    def local_now(self, now: datetime) -> datetime:
        """Aware UTC -> naive business-local time."""
        return now.astimezone(self.tz).replace(tzinfo=None)

    def check_bookable(self, starts_at: datetime, now: datetime) -> None:
        """Raise ValidationError unless ``starts_at`` (local) is in the booking window."""
        local_now = self.local_now(now)
        if starts_at <= local_now:
            raise ValidationError("Requested time is in the past", field="slot_id")
        if starts_at.date() > local_now.date() + timedelta(days=self.advance_days):
            raise ValidationError(
                f"Bookings open at most {self.advance_days} days in advance",
                field="slot_id",
            )
        reason = self.closure_reason(starts_at.date())
        if reason is not None:
            raise ValidationError(
                f"We are closed on {starts_at.date().isoformat()} ({reason.value})",
                field="slot_id",
                closure_reason=reason.value,
            )
