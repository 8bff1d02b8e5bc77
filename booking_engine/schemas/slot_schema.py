"""Time slot state and availability store result models."""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SlotState(str, Enum):
    OPEN = "open"
    HELD = "held"
    BOOKED = "booked"


class ClosureReason(str, Enum):
    """Why a date has no slots at all, as opposed to being fully booked."""

    HOLIDAY = "holiday"
    CLOSED_DAY = "closed_day"


class TimeSlot(BaseModel):
    """A bookable window for one service on one date."""

    id: str
    service_id: str
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    state: SlotState = SlotState.OPEN
    holder_id: Optional[str] = None
    hold_expires_at: Optional[dt.datetime] = None
    booking_id: Optional[str] = None
    version: int = 0

    @property
    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.start_time)

    @property
    def is_open(self) -> bool:
        return self.state == SlotState.OPEN


class SlotQuery(BaseModel):
    """Slots for a service-date plus the closure signal, if any."""

    service_id: str
    date: dt.date
    slots: list[TimeSlot] = Field(default_factory=list)
    closure_reason: Optional[ClosureReason] = None

    @property
    def is_closed(self) -> bool:
        return self.closure_reason is not None

    @property
    def open_slots(self) -> list[TimeSlot]:
        return [s for s in self.slots if s.is_open]

    @property
    def fully_booked(self) -> bool:
        return not self.is_closed and not self.open_slots


class HoldStatus(str, Enum):
    HELD = "held"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"


class HoldResult(BaseModel):
    status: HoldStatus
    slot_id: str
    slot: Optional[TimeSlot] = None

    @property
    def success(self) -> bool:
        return self.status == HoldStatus.HELD


class ConfirmStatus(str, Enum):
    CONFIRMED = "confirmed"
    SLOT_TAKEN = "slot_taken"
    NOT_HOLDER = "not_holder"
    HOLD_EXPIRED = "hold_expired"
    NOT_FOUND = "not_found"


class ConfirmResult(BaseModel):
    status: ConfirmStatus
    slot_id: str
    slot: Optional[TimeSlot] = None

    @property
    def success(self) -> bool:
        return self.status == ConfirmStatus.CONFIRMED
