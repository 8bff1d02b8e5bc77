"""
Explicit transition tables for slots and bookings.

Every state change in the engine must correspond to a row here. The
availability store derives the expected prior states of its conditional
updates from the slot table, and the orchestrator checks booking status
changes against the booking table.

Usage:
    SLOT_LIFECYCLE.sources(SlotTrigger.CONFIRM)        # [SlotState.HELD]
    BOOKING_LIFECYCLE.next_state(BookingStatus.CONFIRMED, BookingTrigger.CANCEL)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from booking_engine.errors import InvalidTransitionError
from booking_engine.schemas.booking_schema import BookingStatus
from booking_engine.schemas.slot_schema import SlotState

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)
T = TypeVar("T", bound=Enum)


class SlotTrigger(str, Enum):
    HOLD = "hold"
    RELEASE = "release"
    EXPIRE = "expire"
    CONFIRM = "confirm"
    CANCEL = "cancel"


class BookingTrigger(str, Enum):
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition(Generic[S, T]):
    """A single valid state transition."""
    from_state: S
    to_state: S
    trigger: T


class Lifecycle(Generic[S, T]):
    """Lookup over a fixed list of transitions."""

    def __init__(self, name: str, transitions: list[Transition[S, T]]) -> None:
        self.name = name
        self.transitions = transitions

    def next_state(self, current: S, trigger: T) -> S:
        """
        Resolve the state reached from ``current`` via ``trigger``.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.transitions:
            if t.from_state == current and t.trigger == trigger:
                logger.debug(
                    "%s transition: %s -> %s (trigger: %s)",
                    self.name, current.value, t.to_state.value, trigger.value,
                )
                return t.to_state

        valid = [t.value for t in self.valid_triggers(current)]
        raise InvalidTransitionError(
            f"No valid {self.name} transition from '{current.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def can(self, current: S, trigger: T) -> bool:
        return any(t.from_state == current and t.trigger == trigger for t in self.transitions)

    def sources(self, trigger: T) -> list[S]:
        """States from which ``trigger`` is allowed."""
        seen: list[S] = []
        for t in self.transitions:
            if t.trigger == trigger and t.from_state not in seen:
                seen.append(t.from_state)
        return seen

    def valid_triggers(self, current: S) -> list[T]:
        return [t.trigger for t in self.transitions if t.from_state == current]

    def is_terminal(self, current: S) -> bool:
        return not self.valid_triggers(current)


SLOT_LIFECYCLE: Lifecycle[SlotState, SlotTrigger] = Lifecycle("slot", [
    Transition(SlotState.OPEN, SlotState.HELD, SlotTrigger.HOLD),
    # Re-hold by the same holder (refresh) or over a lapsed hold
    Transition(SlotState.HELD, SlotState.HELD, SlotTrigger.HOLD),
    Transition(SlotState.HELD, SlotState.OPEN, SlotTrigger.RELEASE),
    Transition(SlotState.HELD, SlotState.OPEN, SlotTrigger.EXPIRE),
    Transition(SlotState.HELD, SlotState.BOOKED, SlotTrigger.CONFIRM),
    Transition(SlotState.BOOKED, SlotState.OPEN, SlotTrigger.CANCEL),
])

BOOKING_LIFECYCLE: Lifecycle[BookingStatus, BookingTrigger] = Lifecycle("booking", [
    Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingTrigger.CONFIRM),
    Transition(BookingStatus.PENDING, BookingStatus.CANCELLED, BookingTrigger.CANCEL),
    Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingTrigger.CANCEL),
    Transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingTrigger.COMPLETE),
])
