"""Tests for the slot and booking transition tables."""

import pytest

from booking_engine.engine.lifecycle import (
    BOOKING_LIFECYCLE,
    SLOT_LIFECYCLE,
    BookingTrigger,
    SlotTrigger,
)
from booking_engine.errors import InvalidTransitionError
from booking_engine.schemas.booking_schema import BookingStatus
from booking_engine.schemas.slot_schema import SlotState


class TestSlotLifecycle:
    def test_open_to_held(self):
        assert SLOT_LIFECYCLE.next_state(SlotState.OPEN, SlotTrigger.HOLD) == SlotState.HELD

    def test_held_refresh(self):
        assert SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.HOLD) == SlotState.HELD

    def test_release_and_expire_reopen(self):
        assert SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.RELEASE) == SlotState.OPEN
        assert SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.EXPIRE) == SlotState.OPEN

    def test_confirm_books(self):
        assert SLOT_LIFECYCLE.next_state(SlotState.HELD, SlotTrigger.CONFIRM) == SlotState.BOOKED

    def test_cancel_reopens_booked(self):
        assert SLOT_LIFECYCLE.next_state(SlotState.BOOKED, SlotTrigger.CANCEL) == SlotState.OPEN

    def test_cannot_confirm_open_slot(self):
        with pytest.raises(InvalidTransitionError, match="Valid triggers"):
            SLOT_LIFECYCLE.next_state(SlotState.OPEN, SlotTrigger.CONFIRM)

    def test_cannot_hold_booked_slot(self):
        assert not SLOT_LIFECYCLE.can(SlotState.BOOKED, SlotTrigger.HOLD)

    def test_sources(self):
        assert SLOT_LIFECYCLE.sources(SlotTrigger.HOLD) == [SlotState.OPEN, SlotState.HELD]
        assert SLOT_LIFECYCLE.sources(SlotTrigger.CONFIRM) == [SlotState.HELD]

    def test_no_slot_state_is_terminal(self):
        assert not any(SLOT_LIFECYCLE.is_terminal(s) for s in SlotState)


class TestBookingLifecycle:
    def test_pending_to_confirmed(self):
        assert BOOKING_LIFECYCLE.next_state(
            BookingStatus.PENDING, BookingTrigger.CONFIRM
        ) == BookingStatus.CONFIRMED

    def test_confirmed_to_completed(self):
        assert BOOKING_LIFECYCLE.next_state(
            BookingStatus.CONFIRMED, BookingTrigger.COMPLETE
        ) == BookingStatus.COMPLETED

    @pytest.mark.parametrize("status", [BookingStatus.PENDING, BookingStatus.CONFIRMED])
    def test_cancel(self, status):
        assert BOOKING_LIFECYCLE.next_state(status, BookingTrigger.CANCEL) == BookingStatus.CANCELLED

    def test_cannot_cancel_twice(self):
        with pytest.raises(InvalidTransitionError):
            BOOKING_LIFECYCLE.next_state(BookingStatus.CANCELLED, BookingTrigger.CANCEL)

    def test_cannot_complete_pending(self):
        with pytest.raises(InvalidTransitionError):
            BOOKING_LIFECYCLE.next_state(BookingStatus.PENDING, BookingTrigger.COMPLETE)

    def test_terminal_states(self):
        assert BOOKING_LIFECYCLE.is_terminal(BookingStatus.CANCELLED)
        assert BOOKING_LIFECYCLE.is_terminal(BookingStatus.COMPLETED)
        assert not BOOKING_LIFECYCLE.is_terminal(BookingStatus.CONFIRMED)

    def test_valid_triggers(self):
        triggers = BOOKING_LIFECYCLE.valid_triggers(BookingStatus.CONFIRMED)
        assert set(triggers) == {BookingTrigger.CANCEL, BookingTrigger.COMPLETE}
