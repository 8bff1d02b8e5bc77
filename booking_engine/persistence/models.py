from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)

from booking_engine.persistence.db import Base

# All DateTime columns except ``starts_at`` hold naive UTC.
# ``starts_at`` and slot dates/times are business-local wall time.


class SlotRow(Base):
    __tablename__ = "time_slots"

    id = Column(String(64), primary_key=True)
    service_id = Column(String(64), nullable=False, index=True)
    slot_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    state = Column(String(16), nullable=False, default="open")
    holder_id = Column(String(64), nullable=True)
    hold_expires_at = Column(DateTime, nullable=True)
    booking_id = Column(String(64), nullable=True, unique=True)
    # Bumped on every state change
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("service_id", "slot_date", "start_time", name="uq_service_slot_start"),
    )


class BookingRow(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True)
    attempt_id = Column(String(64), unique=True, index=True, nullable=True)
    service_id = Column(String(64), nullable=False)
    slot_id = Column(String(64), ForeignKey("time_slots.id"), nullable=False, index=True)
    starts_at = Column(DateTime, nullable=False)
    user_id = Column(String(64), index=True, nullable=True)
    guest_email = Column(String(255), nullable=True)
    guest_phone = Column(String(32), nullable=True)
    address = Column(JSON, nullable=False)
    add_ons = Column(JSON, nullable=False)
    special_instructions = Column(Text, nullable=True)
    quote = Column(JSON, nullable=False)
    payment_reference = Column(String(128), nullable=True, index=True)
    amount_charged = Column(Integer, nullable=False, default=0)
    credits_applied = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="pending")
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class CreditAccountRow(Base):
    """Running balance used to arbitrate concurrent debits."""

    __tablename__ = "credit_accounts"

    user_id = Column(String(64), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)


class CreditEntryRow(Base):
    __tablename__ = "credit_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("credit_accounts.user_id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    booking_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False)


class PromoCodeRow(Base):
    __tablename__ = "promo_codes"

    code = Column(String(64), primary_key=True)
    kind = Column(String(16), nullable=False)
    value = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    max_uses = Column(Integer, nullable=True)
    uses = Column(Integer, nullable=False, default=0)
    description = Column(String(255), nullable=False, default="")


class ReconciliationRow(Base):
    __tablename__ = "reconciliation_records"

    id = Column(String(64), primary_key=True)
    kind = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="open")
    charge_id = Column(String(128), nullable=True, index=True)
    amount = Column(Integer, nullable=False, default=0)
    slot_id = Column(String(64), nullable=True)
    booking_id = Column(String(64), nullable=True)
    attempt_id = Column(String(64), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)


class ServiceRow(Base):
    """Catalog entry; prices are shared by every process through this table."""

    __tablename__ = "services"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    base_price = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False)


class PaymentAttemptRow(Base):
    """One authorization request per idempotency key, written before the gateway call."""

    __tablename__ = "payment_attempts"

    idempotency_key = Column(String(96), primary_key=True)
    attempt_id = Column(String(64), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    charge_id = Column(String(128), nullable=True, index=True)
    status = Column(String(16), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
