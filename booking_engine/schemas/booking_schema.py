"""Booking request, quote, and booking data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Service(BaseModel):
    """Immutable catalog entry for a bookable offering."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    duration_minutes: int = Field(gt=0)
    base_price: int = Field(ge=0, description="Base price in cents")


class AddOns(BaseModel):
    """Optional extras on top of the base session."""

    model_config = ConfigDict(frozen=True)

    extra_visits: int = Field(default=0, ge=0)
    family_members: int = Field(default=0, ge=0)
    extended_minutes: int = Field(default=0, ge=0)


class AddOnCosts(BaseModel):
    """Per add-on cost breakdown, in cents."""

    model_config = ConfigDict(frozen=True)

    extra_visits: int = 0
    family_members: int = 0
    extended_time: int = 0

    @property
    def total(self) -> int:
        return self.extra_visits + self.family_members + self.extended_time


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=2)
    zip_code: str = Field(min_length=5)

    def one_line(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}"


class BookingRequest(BaseModel):
    """Immutable snapshot of everything the customer asked for.

    The requested date-time is identified by ``slot_id``; one promo code at
    most. Either ``user_id`` or a guest contact (email or phone) is required.
    """

    model_config = ConfigDict(frozen=True)

    service_id: str
    slot_id: str
    address: Address
    add_ons: AddOns = Field(default_factory=AddOns)
    special_instructions: Optional[str] = None
    promo_code: Optional[str] = None
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    payment_method: Optional[str] = None
    use_credits: bool = True

    @model_validator(mode="after")
    def _require_contact(self) -> "BookingRequest":
        if not (self.user_id or self.guest_email or self.guest_phone):
            raise ValueError("either user_id or a guest email/phone is required")
        return self


class PriceQuote(BaseModel):
    """Priced snapshot of a booking request, all amounts in cents.

    ``total == max(0, subtotal + setup_fee - discount)``. The credit preview
    fields never change ``total``; credit is applied at payment time.
    """

    model_config = ConfigDict(frozen=True)

    service_id: str
    base_price: int
    duration_minutes: int
    add_ons: AddOns
    add_on_costs: AddOnCosts
    subtotal: int
    setup_fee: int
    discount: int
    total: int
    promo_code: Optional[str] = None
    bypass_payment: bool = False
    credits_applicable: Optional[int] = None
    amount_due: Optional[int] = None
    fingerprint: str


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Booking(BaseModel):
    """Persisted booking. Never deleted; cancellation is a status change."""

    id: str
    service_id: str
    slot_id: str
    starts_at: datetime
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    address: Address
    add_ons: AddOns
    special_instructions: Optional[str] = None
    quote: PriceQuote
    payment_reference: Optional[str] = None
    amount_charged: int = 0
    credits_applied: int = 0
    status: BookingStatus = BookingStatus.PENDING
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BookingConfirmation(BaseModel):
    """Result of a successful checkout, with any non-fatal warnings."""

    booking: Booking
    amount_charged: int
    credits_applied: int
    remaining_credit: Optional[int] = None
    warnings: list[str] = Field(default_factory=list)


class CancellationResult(BaseModel):
    booking: Booking
    credits_returned: int = 0
    amount_refunded: int = 0
    refund_pending_reference: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
