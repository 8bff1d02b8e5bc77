"""Shared test fixtures and helpers."""

import dataclasses
import os
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

# Settings are read at import time
os.environ["APP_ENV"] = "test"

from booking_engine.config import parse_weekly_hours, settings
from booking_engine.engine.availability import AvailabilityStore, slot_id_for
from booking_engine.engine.business_calendar import BusinessCalendar
from booking_engine.engine.catalog import ServiceCatalog
from booking_engine.engine.ledger import CreditLedger
from booking_engine.engine.orchestrator import BookingOrchestrator
from booking_engine.engine.promos import PromoBook
from booking_engine.engine.reconciliation import ReconciliationLog
from booking_engine.engine.reservation import ReservationEngine
from booking_engine.engine.payment_log import PaymentLog
from booking_engine.errors import PaymentDeclined, ServiceUnavailable, Timeout
from booking_engine.integrations.payments import Authorization, RefundResult
from booking_engine.integrations.setup_fees import SetupFeeUnavailable
from booking_engine.persistence.db import build_engine, init_db, make_session_factory
from booking_engine.schemas.booking_schema import (
    AddOns,
    Address,
    Booking,
    BookingRequest,
    Service,
)

# Monday 2026-10-19 09:00 in Los Angeles
NOW = datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)
TUESDAY = date(2026, 10, 20)
SATURDAY = date(2026, 10, 24)
SUNDAY = date(2026, 10, 25)
HOLIDAY = date(2026, 10, 22)

HOURS = (
    "mon=08:00-18:00,tue=08:00-18:00,wed=08:00-18:00,thu=08:00-18:00,"
    "fri=08:00-18:00,sat=09:00-17:00,sun=closed"
)

ADDRESS = Address(street="123 Ocean Ave", city="Santa Monica", state="CA", zip_code="90401")

TEST_SERVICES = [
    Service(id="cold_plunge", name="Cold Plunge Session", duration_minutes=60, base_price=8000),
    Service(id="infrared_sauna", name="Infrared Sauna Session", duration_minutes=60, base_price=17500),
]


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """In-memory payment gateway honouring idempotency keys."""

    def __init__(self) -> None:
        self.authorizations: list[tuple[int, Optional[str], str]] = []
        self.refunds: list[tuple[str, int, str]] = []
        self.voids: list[str] = []
        self.charges: dict[str, Authorization] = {}
        self.decline = False
        self.unavailable_times = 0
        # Charge lands, but the answer never reaches the caller
        self.timeout_times = 0
        # Request is lost before any charge lands
        self.hang_times = 0
        self.authorized_amount: Optional[int] = None
        self.barrier: Optional[threading.Barrier] = None
        self.fail_void = False
        self.fail_lookup = False
        self.fail_refund = False
        self._lock = threading.Lock()

    def authorize(self, amount: int, method: Optional[str], idempotency_key: str) -> Authorization:
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        with self._lock:
            self.authorizations.append((amount, method, idempotency_key))
            if self.decline:
                raise PaymentDeclined("Card declined", attempt_id=idempotency_key)
            if self.unavailable_times > 0:
                self.unavailable_times -= 1
                raise ServiceUnavailable("Gateway unreachable")
            if self.hang_times > 0:
                self.hang_times -= 1
                raise Timeout("Gateway did not answer")
            if idempotency_key not in self.charges:
                self.charges[idempotency_key] = Authorization(
                    charge_id=f"pi_{len(self.charges) + 1:04d}",
                    amount=amount if self.authorized_amount is None else self.authorized_amount,
                )
            if self.timeout_times > 0:
                self.timeout_times -= 1
                raise Timeout("Gateway did not answer")
            return self.charges[idempotency_key]

    def find_charge(self, idempotency_key: str) -> Optional[Authorization]:
        if self.fail_lookup:
            raise ServiceUnavailable("Charge search unavailable")
        return self.charges.get(idempotency_key)

    def refund(self, charge_id: str, amount: int, idempotency_key: str) -> RefundResult:
        if self.fail_refund:
            raise ServiceUnavailable("Refunds unavailable", charge_id=charge_id)
        self.refunds.append((charge_id, amount, idempotency_key))
        return RefundResult(
            refund_id=f"re_{len(self.refunds)}", charge_id=charge_id, amount=amount,
            status="succeeded",
        )

    def void(self, charge_id: str) -> None:
        if self.fail_void:
            raise ServiceUnavailable("Void unavailable", charge_id=charge_id)
        self.voids.append(charge_id)


class FakeSetupFees:
    def __init__(self, fee: int = 1500) -> None:
        self.fee = fee
        self.unavailable = False

    def compute_setup_fee(self, address: Address) -> int:
        if self.unavailable:
            raise SetupFeeUnavailable("Distance service down")
        return self.fee


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[Booking] = []
        self.fail = False

    def send_confirmation(self, booking: Booking) -> None:
        if self.fail:
            raise ConnectionError("SMTP relay refused connection")
        self.sent.append(booking)


def make_request(slot_id: str, service_id: str = "cold_plunge", **overrides) -> BookingRequest:
    """Helper to create a BookingRequest with sensible defaults."""
    data = dict(
        service_id=service_id,
        slot_id=slot_id,
        address=ADDRESS,
        add_ons=AddOns(),
        user_id="user-1",
        payment_method="pm_card_visa",
    )
    data.update(overrides)
    return BookingRequest(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app_config():
    return dataclasses.replace(
        settings,
        payment=dataclasses.replace(
            settings.payment, timeout_sec=5.0, retry_attempts=3, retry_base_delay_sec=0.01,
        ),
        business=dataclasses.replace(settings.business, cancellation_notice_hours=24),
    )


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'booking.db'}", echo=False)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def unmigrated_sessions(tmp_path):
    """Sessions on a database without tables: every statement fails."""
    engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}", echo=False)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def calendar():
    return BusinessCalendar(
        weekly_hours=parse_weekly_hours(HOURS),
        holidays=frozenset({HOLIDAY}),
        tz=ZoneInfo("America/Los_Angeles"),
        slot_length_minutes=120,
        advance_days=30,
    )


@pytest.fixture
def store(sessions, calendar, clock):
    return AvailabilityStore(sessions, calendar=calendar, clock=clock, hold_ttl=timedelta(minutes=10))


@pytest.fixture
def reservations(store, clock):
    return ReservationEngine(store, clock=clock)


@pytest.fixture
def ledger(sessions, clock):
    return CreditLedger(sessions, clock=clock)


@pytest.fixture
def promo_book(sessions, clock):
    return PromoBook(sessions, allow_dev_bypass=True, clock=clock)


@pytest.fixture
def reconciliation(sessions, clock):
    return ReconciliationLog(sessions, clock=clock)


@pytest.fixture
def payments(sessions, clock):
    return PaymentLog(sessions, clock=clock)


@pytest.fixture
def catalog(sessions, clock):
    return ServiceCatalog(sessions, list(TEST_SERVICES), clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def setup_fees():
    return FakeSetupFees()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def tuesday_slots(store):
    """Generate the 08:00-18:00 Tuesday slots for the cold plunge."""
    store.generate_slots("cold_plunge", TUESDAY)
    return store.query_slots("cold_plunge", TUESDAY).slots


@pytest.fixture
def slot_id(tuesday_slots):
    return slot_id_for("cold_plunge", TUESDAY, tuesday_slots[1].start_time)


@pytest.fixture
def orchestrator(
    sessions, catalog, store, ledger, promo_book, gateway, setup_fees, notifier,
    reconciliation, payments, clock, app_config,
):
    return BookingOrchestrator(
        session_factory=sessions,
        catalog=catalog,
        store=store,
        ledger=ledger,
        promos=promo_book,
        gateway=gateway,
        setup_fees=setup_fees,
        notifier=notifier,
        reconciliation=reconciliation,
        clock=clock,
        config=app_config,
        sleep=lambda _: None,
        payments=payments,
    )
