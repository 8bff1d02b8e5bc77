from booking_engine.engine.availability import AvailabilityStore
from booking_engine.engine.business_calendar import BusinessCalendar
from booking_engine.engine.catalog import ServiceCatalog
from booking_engine.engine.ledger import CreditLedger
from booking_engine.engine.orchestrator import BookingAttempt, BookingOrchestrator
from booking_engine.engine.payment_log import PaymentLog, payment_key
from booking_engine.engine.pricing import compute_price
from booking_engine.engine.promos import PromoBook
from booking_engine.engine.reconciliation import ReconciliationLog
from booking_engine.engine.reservation import ReservationEngine

__all__ = [
    "AvailabilityStore", "BusinessCalendar", "ServiceCatalog", "CreditLedger",
    "BookingAttempt", "BookingOrchestrator", "PaymentLog", "payment_key", "compute_price",
    "PromoBook", "ReconciliationLog", "ReservationEngine",
]
