"""
Booking orchestrator.

Drives one checkout from request to confirmed booking:

    start:    validate -> setup fee -> price -> hold
    finalize: price-drift check -> credit split -> settle earlier charges
              -> authorize -> confirm slot
              -> persist (booking + credit debit + promo use) -> notify

Payment, slot confirmation and persistence behave as one step from the
customer's point of view. Once a charge exists, any later failure either
voids it or leaves a reconciliation record, and the caller sees
PaymentBookingMismatch rather than a generic failure.

Every authorization is written to the payment log under a key built from
the attempt and the amount before the gateway is called. A retry for the
same amount replays the same charge; a different amount gets a new key,
and any charge made under an earlier key is voided first.

Usage:
    orchestrator = BookingOrchestrator(gateway=StripeGateway())
    attempt = orchestrator.start(request)
    try:
        confirmation = orchestrator.finalize(attempt)
    except PriceDrift as e:
        attempt = orchestrator.reconfirm(attempt, e.current_quote)
        confirmation = orchestrator.finalize(attempt)
"""

import dataclasses
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from booking_engine.config import AppConfig, settings
from booking_engine.engine.availability import AvailabilityStore
from booking_engine.engine.catalog import ServiceCatalog
from booking_engine.engine.ledger import CreditLedger
from booking_engine.engine.lifecycle import BOOKING_LIFECYCLE, BookingTrigger
from booking_engine.engine.payment_log import PaymentLog, payment_key
from booking_engine.engine.pricing import compute_price, split_credit, validate_add_ons
from booking_engine.engine.promos import PromoBook
from booking_engine.engine.reconciliation import ReconciliationLog
from booking_engine.engine.reservation import ReservationEngine
from booking_engine.engine.retry import call_with_timeout, with_retry
from booking_engine.errors import (
    BookingError,
    InvalidTransitionError,
    PaymentBookingMismatch,
    PaymentDeclined,
    PriceDrift,
    ServiceUnavailable,
    Timeout,
    ValidationError,
)
from booking_engine.integrations.notifications import LoggingNotifier, Notifier
from booking_engine.integrations.payments import Authorization, PaymentGateway, StripeGateway
from booking_engine.integrations.setup_fees import (
    SetupFeeService,
    SetupFeeUnavailable,
    ZipDistanceSetupFees,
)
from booking_engine.logging_context import attempt_scope, get_attempt_logger
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import BookingRow
from booking_engine.schemas.booking_schema import (
    AddOns,
    Address,
    Booking,
    BookingConfirmation,
    BookingRequest,
    BookingStatus,
    CancellationResult,
    PriceQuote,
    Service,
)
from booking_engine.schemas.payment_schema import PaymentAttempt, PaymentAttemptStatus
from booking_engine.schemas.promo_schema import PromoCode
from booking_engine.schemas.reconciliation_schema import (
    ReconciliationKind,
    ReconciliationStatus,
)
from booking_engine.schemas.slot_schema import TimeSlot
from booking_engine.utils import new_id, to_naive_utc, utcnow

logger = get_attempt_logger(__name__)

NOTIFICATION_WARNING = "Your booking is confirmed, but we could not send the confirmation message."


@dataclass(frozen=True)
class BookingAttempt:
    """
    Snapshot of a checkout in progress.

    ``attempt_id`` doubles as the slot holder id and the prefix of every
    payment idempotency key; ``booking_id`` is fixed up front so a retried
    confirm links the same booking.
    """

    attempt_id: str
    booking_id: str
    request: BookingRequest
    quote: PriceQuote
    slot: TimeSlot
    promo: Optional[PromoCode] = None
    hold_expires_at: Optional[datetime] = None

    @property
    def holder_id(self) -> str:
        return self.attempt_id

    @property
    def starts_at(self) -> datetime:
        return self.slot.starts_at


def _to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        service_id=row.service_id,
        slot_id=row.slot_id,
        starts_at=row.starts_at,
        user_id=row.user_id,
        guest_email=row.guest_email,
        guest_phone=row.guest_phone,
        address=Address.model_validate(row.address),
        add_ons=AddOns.model_validate(row.add_ons),
        special_instructions=row.special_instructions,
        quote=PriceQuote.model_validate(row.quote),
        payment_reference=row.payment_reference,
        amount_charged=row.amount_charged,
        credits_applied=row.credits_applied,
        status=BookingStatus(row.status),
        cancellation_reason=row.cancellation_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _already_finalized(booking: Booking) -> BookingConfirmation:
    return BookingConfirmation(
        booking=booking,
        amount_charged=booking.amount_charged,
        credits_applied=booking.credits_applied,
    )


class BookingOrchestrator:
    """Composes pricing, reservation, payment, ledger and persistence."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        catalog: Optional[ServiceCatalog] = None,
        store: Optional[AvailabilityStore] = None,
        ledger: Optional[CreditLedger] = None,
        promos: Optional[PromoBook] = None,
        gateway: Optional[PaymentGateway] = None,
        setup_fees: Optional[SetupFeeService] = None,
        notifier: Optional[Notifier] = None,
        reconciliation: Optional[ReconciliationLog] = None,
        clock: Callable[[], datetime] = utcnow,
        config: Optional[AppConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        payments: Optional[PaymentLog] = None,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self._clock = clock
        self._sleep = sleep
        self.config = config or settings
        self.catalog = catalog or ServiceCatalog(self._sessions, clock=clock)
        self.store = store or AvailabilityStore(self._sessions, clock=clock)
        self.reservations = ReservationEngine(self.store, clock=clock)
        self.ledger = ledger or CreditLedger(self._sessions, clock=clock)
        self.promos = promos or PromoBook(self._sessions, clock=clock)
        self.gateway = gateway or StripeGateway(self.config.payment)
        self.setup_fees = setup_fees or ZipDistanceSetupFees(self.config.setup_fee)
        self.notifier = notifier or LoggingNotifier(self.config.business.name)
        self.reconciliation = reconciliation or ReconciliationLog(self._sessions, clock=clock)
        self.payments = payments or PaymentLog(self._sessions, clock=clock)

    @property
    def _timeout(self) -> float:
        return self.config.payment.timeout_sec

    # --- Checkout ---

    def create_booking(self, request: BookingRequest) -> BookingConfirmation:
        """Run a whole checkout in one call."""
        return self.finalize(self.start(request))

    def start(self, request: BookingRequest) -> BookingAttempt:
        """
        Validate and price the request, then hold its slot.

        Raises:
            ValidationError: Unknown service or slot, slot outside the
                booking window or business hours, add-ons out of range,
                unusable promo code, address outside the service area.
            SlotUnavailable: Someone else holds or booked the slot.
        """
        with attempt_scope(new_id("ATT")) as attempt_id:
            return self._start(request, attempt_id)

    def _start(self, request: BookingRequest, attempt_id: str) -> BookingAttempt:
        service = self.catalog.get(request.service_id)
        validate_add_ons(request.add_ons, self.config.pricing)

        slot = self.store.get_slot(request.slot_id)
        if slot is None:
            raise ValidationError(f"Unknown time slot: {request.slot_id}", field="slot_id")
        if slot.service_id != service.id:
            raise ValidationError(
                f"Time slot {slot.id} is not for {service.name}", field="slot_id"
            )
        now = self._clock()
        calendar = self.store.calendar
        calendar.check_bookable(slot.starts_at, now)
        if not calendar.within_hours(slot.date, slot.start_time, slot.end_time):
            raise ValidationError("Requested time is outside business hours", field="slot_id")

        promo = self.promos.resolve(request.promo_code, now) if request.promo_code else None
        setup_fee = self._setup_fee(request.address)
        quote = self._price(service, request, setup_fee, promo)

        held = self.reservations.hold(slot.id, attempt_id)
        logger.info(
            "Attempt started: %s on %s, total %d", service.id, slot.id, quote.total
        )
        return BookingAttempt(
            attempt_id=attempt_id,
            booking_id=new_id("BK"),
            request=request,
            quote=quote,
            slot=held,
            promo=promo,
            hold_expires_at=held.hold_expires_at,
        )

    def finalize(self, attempt: BookingAttempt) -> BookingConfirmation:
        """
        Charge, confirm and persist a started attempt.

        Safe to call again with the same attempt, including concurrently:
        the payment is keyed by attempt and amount, and a booking already
        stored for the attempt is returned as is.

        Raises:
            PriceDrift: The price changed since ``start``; the hold is kept.
            PaymentDeclined: The hold is released.
            ServiceUnavailable: The gateway or store is down; any hold is
                released.
            Timeout: The gateway did not answer in time; the hold is kept.
            HoldExpired / NotHolder / SlotTaken: The slot was lost; any
                charge is voided.
            PaymentBookingMismatch: A charge exists but the booking could
                not be stored; a reconciliation record references it.
        """
        with attempt_scope(attempt.attempt_id):
            return self._finalize(attempt)

    def _finalize(self, attempt: BookingAttempt) -> BookingConfirmation:
        existing = self._booking_for_attempt(attempt.attempt_id)
        if existing is not None:
            logger.info("Attempt already finalized as %s", existing.id)
            return _already_finalized(existing)

        request, quote = attempt.request, attempt.quote
        self._check_drift(attempt)

        credits_used, balance = 0, None
        if request.user_id and request.use_credits and quote.total > 0:
            balance = self.ledger.balance(request.user_id)
            credits_used, _ = split_credit(quote.total, balance)
        amount_due = quote.total - credits_used

        authorization = self._authorize(attempt, amount_due)

        try:
            self.reservations.confirm(
                attempt.slot.id, attempt.holder_id, attempt.booking_id, attempt.hold_expires_at
            )
        except BookingError as e:
            # Slot lost: a voided charge leaves nothing to reconcile
            if authorization.charge_id and not self._void_charge(authorization.charge_id):
                self._raise_mismatch(attempt, authorization, e, voided=False)
            raise

        booking, created = self._persist(attempt, authorization, credits_used)
        if not created:
            logger.info("Attempt was finalized concurrently as %s", booking.id)
            return _already_finalized(booking)

        warnings: list[str] = []
        try:
            call_with_timeout(
                self.notifier.send_confirmation, self._timeout, "confirmation notice", booking
            )
        except Exception as e:
            logger.warning("Confirmation notice for %s failed: %s", booking.id, e)
            warnings.append(NOTIFICATION_WARNING)

        logger.info(
            "Booking %s confirmed: charged %d, credits %d",
            booking.id, authorization.amount, credits_used,
        )
        return BookingConfirmation(
            booking=booking,
            amount_charged=authorization.amount,
            credits_applied=credits_used,
            remaining_credit=None if balance is None else balance - credits_used,
            warnings=warnings,
        )

    def reconfirm(self, attempt: BookingAttempt, quote: PriceQuote) -> BookingAttempt:
        """
        Accept a drifted price and refresh the hold.

        ``quote`` must be the current price; if it moved again the caller
        gets another PriceDrift.
        """
        with attempt_scope(attempt.attempt_id):
            service = self.catalog.get(attempt.request.service_id)
            current = self._price(service, attempt.request, quote.setup_fee, attempt.promo)
            if current.fingerprint != quote.fingerprint or current.total != quote.total:
                raise PriceDrift(
                    "Price changed again before it was accepted",
                    current_quote=current,
                    attempt_id=attempt.attempt_id,
                    slot_id=attempt.slot.id,
                )
            held = self.reservations.hold(attempt.slot.id, attempt.holder_id)
            logger.info("Accepted new total %d (was %d)", current.total, attempt.quote.total)
            return dataclasses.replace(
                attempt, quote=current, slot=held, hold_expires_at=held.hold_expires_at
            )

    def abandon(
        self, attempt: BookingAttempt, charge: Optional[Authorization] = None
    ) -> Optional[str]:
        """
        Give up on an attempt: release its hold and void every charge it made.

        Charges are found through the payment log, so an authorization
        that timed out is covered even when the caller never saw it.
        ``charge`` adds one the caller obtained some other way.

        Returns the first reconciliation id when a charge could not be
        voided or verified.

        Raises:
            InvalidTransitionError: The attempt already became a booking;
                use ``cancel_booking``.
        """
        with attempt_scope(attempt.attempt_id):
            existing = self._booking_for_attempt(attempt.attempt_id)
            if existing is not None:
                raise InvalidTransitionError(
                    f"Attempt {attempt.attempt_id} is already booking {existing.id}",
                    booking_id=existing.id,
                )
            self.reservations.release(attempt.slot.id, attempt.holder_id)
            if charge is not None and charge.charge_id:
                key = payment_key(attempt.attempt_id, charge.amount)
                self.payments.begin(attempt.attempt_id, key, charge.amount)
                self.payments.mark(key, PaymentAttemptStatus.AUTHORIZED, charge.charge_id)
            record_ids = self._settle_payments(attempt, note="Checkout abandoned")
            logger.info("Attempt abandoned")
            return record_ids[0] if record_ids else None

    # --- Booking lifecycle ---

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        try:
            with session_scope(self._sessions) as session:
                row = session.get(BookingRow, booking_id)
                return _to_booking(row) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable(
                f"Booking store unreachable: {e}", booking_id=booking_id
            ) from e

    def bookings_for(self, user_id: str) -> list[Booking]:
        try:
            with session_scope(self._sessions) as session:
                rows = session.scalars(
                    select(BookingRow)
                    .where(BookingRow.user_id == user_id)
                    .order_by(BookingRow.starts_at)
                ).all()
                return [_to_booking(r) for r in rows]
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Booking store unreachable: {e}", user_id=user_id) from e

    def cancel_booking(
        self, booking_id: str, reason: str, now: Optional[datetime] = None
    ) -> CancellationResult:
        """
        Cancel a booking and give back what it used.

        The slot reopens and applied credits are granted back. The card
        amount is refunded only when cancelling outside the notice window.
        A refund that cannot be issued leaves a manual-refund record and a
        warning; the cancellation itself still stands.
        """
        now = now or self._clock()
        booking = self._transition(
            booking_id, BookingTrigger.CANCEL, now, cancellation_reason=reason
        )
        warnings: list[str] = []

        try:
            self.reservations.free_booked(booking.slot_id, booking.id)
        except ServiceUnavailable as e:
            logger.error("Could not reopen slot %s: %s", booking.slot_id, e)
            warnings.append("The time slot could not be reopened yet.")

        credits_returned = 0
        if booking.credits_applied and booking.user_id:
            try:
                self.ledger.grant_credits(
                    booking.user_id,
                    booking.credits_applied,
                    reason=f"Cancelled booking {booking.id}",
                    booking_id=booking.id,
                )
                credits_returned = booking.credits_applied
            except ServiceUnavailable as e:
                record_id = self._manual_refund(booking, booking.credits_applied, f"credit return: {e}")
                warnings.append(
                    f"Your credits will be returned shortly (reference {record_id})."
                )

        amount_refunded, pending = 0, None
        if booking.amount_charged and booking.payment_reference:
            if self._refundable(booking, now):
                try:
                    with_retry(
                        lambda: call_with_timeout(
                            self.gateway.refund,
                            self._timeout,
                            "refund",
                            booking.payment_reference,
                            booking.amount_charged,
                            f"refund-{booking.id}",
                        ),
                        description="refund",
                        sleep=self._sleep,
                        config=self.config.payment,
                    )
                    amount_refunded = booking.amount_charged
                except BookingError as e:
                    pending = self._manual_refund(booking, booking.amount_charged, f"card refund: {e}")
                    warnings.append(
                        f"Your refund is being processed manually (reference {pending})."
                    )
            else:
                warnings.append(
                    f"Cancelled within {self.config.business.cancellation_notice_hours} hours "
                    "of the appointment; the card payment is not refunded."
                )

        logger.info(
            "Booking %s cancelled: credits returned %d, refunded %d",
            booking.id, credits_returned, amount_refunded,
        )
        return CancellationResult(
            booking=booking,
            credits_returned=credits_returned,
            amount_refunded=amount_refunded,
            refund_pending_reference=pending,
            warnings=warnings,
        )

    def complete_booking(self, booking_id: str) -> Booking:
        return self._transition(booking_id, BookingTrigger.COMPLETE, self._clock())

    # --- Internals ---

    def _price(
        self,
        service: Service,
        request: BookingRequest,
        setup_fee: int,
        promo: Optional[PromoCode],
    ) -> PriceQuote:
        return compute_price(
            service,
            request.add_ons,
            setup_fee=setup_fee,
            promo=promo,
            allow_dev_bypass=self.promos.allow_dev_bypass,
            config=self.config.pricing,
        )

    def _setup_fee(self, address: Address) -> int:
        try:
            return call_with_timeout(
                self.setup_fees.compute_setup_fee, self._timeout, "setup fee lookup", address
            )
        except (SetupFeeUnavailable, Timeout, ServiceUnavailable) as e:
            fallback = self.config.setup_fee.max_fee_cents
            logger.warning("Setup fee service degraded (%s); charging maximum %d", e, fallback)
            return fallback

    def _check_drift(self, attempt: BookingAttempt) -> None:
        service = self.catalog.get(attempt.request.service_id)
        current = self._price(service, attempt.request, attempt.quote.setup_fee, attempt.promo)
        if current.fingerprint != attempt.quote.fingerprint or current.total != attempt.quote.total:
            logger.info("Price drift: quoted %d, now %d", attempt.quote.total, current.total)
            raise PriceDrift(
                f"Price changed from {attempt.quote.total} to {current.total}",
                current_quote=current,
                attempt_id=attempt.attempt_id,
                slot_id=attempt.slot.id,
            )

    def _authorize(self, attempt: BookingAttempt, amount_due: int) -> Authorization:
        """
        Charge ``amount_due`` under the key for that exact amount.

        Charges made for the same attempt under other amounts are voided
        first, so at most one live charge ever backs an attempt.
        """
        key = payment_key(attempt.attempt_id, amount_due) if amount_due else None
        try:
            self._settle_payments(attempt, keep=key, note="Superseded by a new total")
            if key is None:
                reason = "bypass" if attempt.quote.bypass_payment else "covered"
                return Authorization.zero(reason)
            self.payments.begin(attempt.attempt_id, key, amount_due)
            authorization = with_retry(
                lambda: call_with_timeout(
                    self.gateway.authorize,
                    self._timeout,
                    "payment authorization",
                    amount_due,
                    attempt.request.payment_method,
                    key,
                ),
                description="payment authorization",
                sleep=self._sleep,
                config=self.config.payment,
            )
        except PaymentDeclined:
            if key is not None:
                self.payments.mark(key, PaymentAttemptStatus.DECLINED)
            self.reservations.release(attempt.slot.id, attempt.holder_id)
            raise
        except ServiceUnavailable:
            self.reservations.release(attempt.slot.id, attempt.holder_id)
            raise

        self.payments.mark(key, PaymentAttemptStatus.AUTHORIZED, authorization.charge_id)
        if authorization.amount != amount_due:
            self._wrong_amount(attempt, authorization, amount_due)
        return authorization

    def _wrong_amount(
        self, attempt: BookingAttempt, authorization: Authorization, amount_due: int
    ) -> None:
        """Undo a charge for a total other than the one quoted. Always raises."""
        error = ServiceUnavailable(
            f"Gateway authorized {authorization.amount} for a charge of {amount_due}",
            attempt_id=attempt.attempt_id,
            charge_id=authorization.charge_id,
        )
        logger.error("%s", error.message)
        self.reservations.release(attempt.slot.id, attempt.holder_id)
        if authorization.charge_id and not self._void_charge(authorization.charge_id):
            self._raise_mismatch(attempt, authorization, error, voided=False)
        raise error

    def _settle_payments(
        self, attempt: BookingAttempt, keep: Optional[str] = None, note: str = ""
    ) -> list[str]:
        """
        Void every charge the attempt may hold except the one under ``keep``.

        A payment whose outcome is unknown is looked up by its key first. A
        charge that cannot be voided, or a lookup that fails, becomes a
        reconciliation record; the ids of those records are returned.
        """
        record_ids: list[str] = []
        for payment in self.payments.unsettled(attempt.attempt_id):
            if payment.idempotency_key == keep:
                continue
            charge_id = payment.charge_id
            if charge_id is None:
                try:
                    found = call_with_timeout(
                        self.gateway.find_charge,
                        self._timeout,
                        "charge lookup",
                        payment.idempotency_key,
                    )
                except BookingError as e:
                    record_ids.append(self._unsettled_payment(attempt, payment, f"{note}; lookup failed: {e}"))
                    continue
                if found is None or not found.charge_id:
                    self.payments.mark(payment.idempotency_key, PaymentAttemptStatus.NOT_CHARGED)
                    continue
                charge_id = found.charge_id
            if self._void_charge(charge_id):
                self.payments.mark(payment.idempotency_key, PaymentAttemptStatus.VOIDED, charge_id)
                logger.info("Voided earlier charge %s for %d", charge_id, payment.amount)
            else:
                record_ids.append(self._unsettled_payment(
                    attempt, payment.model_copy(update={"charge_id": charge_id}),
                    f"{note}; void failed",
                ))
        return record_ids

    def _unsettled_payment(self, attempt: BookingAttempt, payment: PaymentAttempt, note: str) -> str:
        record_id = self.reconciliation.record(
            ReconciliationKind.PAYMENT_BOOKING_MISMATCH,
            charge_id=payment.charge_id,
            amount=payment.amount,
            slot_id=attempt.slot.id,
            attempt_id=attempt.attempt_id,
            note=f"Payment {payment.idempotency_key}: {note}",
        )
        self.payments.mark(payment.idempotency_key, PaymentAttemptStatus.RECONCILING)
        return record_id

    def _booking_for_attempt(self, attempt_id: str) -> Optional[Booking]:
        try:
            with session_scope(self._sessions) as session:
                row = session.scalar(select(BookingRow).where(BookingRow.attempt_id == attempt_id))
                return _to_booking(row) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Booking store unreachable: {e}") from e

    def _persist(
        self, attempt: BookingAttempt, authorization: Authorization, credits_used: int
    ) -> tuple[Booking, bool]:
        """Store the booking. Returns ``(booking, created)``."""
        request, quote = attempt.request, attempt.quote
        now = to_naive_utc(self._clock())
        try:
            with session_scope(self._sessions) as session:
                row = BookingRow(
                    id=attempt.booking_id,
                    attempt_id=attempt.attempt_id,
                    service_id=request.service_id,
                    slot_id=attempt.slot.id,
                    starts_at=attempt.starts_at,
                    user_id=request.user_id,
                    guest_email=request.guest_email,
                    guest_phone=request.guest_phone,
                    address=request.address.model_dump(),
                    add_ons=request.add_ons.model_dump(),
                    special_instructions=request.special_instructions,
                    quote=quote.model_dump(),
                    payment_reference=authorization.charge_id,
                    amount_charged=authorization.amount,
                    credits_applied=credits_used,
                    status=BOOKING_LIFECYCLE.next_state(
                        BookingStatus.PENDING, BookingTrigger.CONFIRM
                    ).value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                if credits_used:
                    self.ledger.debit(
                        request.user_id,
                        credits_used,
                        reason=f"Booking {attempt.booking_id}",
                        booking_id=attempt.booking_id,
                        session=session,
                    )
                if quote.promo_code:
                    self.promos.redeem(quote.promo_code, session)
                if authorization.charge_id:
                    self.payments.mark_booked(
                        payment_key(attempt.attempt_id, authorization.amount), session
                    )
                booking = _to_booking(row)
        except (BookingError, SQLAlchemyError) as e:
            concurrent = self._adopt_concurrent_booking(attempt, authorization)
            if concurrent is not None:
                return concurrent, False
            self._persistence_failed(attempt, authorization, e)
        return booking, True

    def _adopt_concurrent_booking(
        self, attempt: BookingAttempt, authorization: Authorization
    ) -> Optional[Booking]:
        """
        Return the booking a parallel ``finalize`` stored for this attempt.

        That booking owns the slot. Our charge is kept only if it is the one
        the booking references; any other charge is voided or recorded.
        """
        try:
            existing = self._booking_for_attempt(attempt.attempt_id)
        except ServiceUnavailable:
            return None
        if existing is None:
            return None
        charge_id = authorization.charge_id
        if charge_id and charge_id != existing.payment_reference:
            if not self._void_charge(charge_id):
                self.reconciliation.record(
                    ReconciliationKind.PAYMENT_BOOKING_MISMATCH,
                    charge_id=charge_id,
                    amount=authorization.amount,
                    slot_id=attempt.slot.id,
                    booking_id=existing.id,
                    attempt_id=attempt.attempt_id,
                    note="Second charge for an attempt that was already booked; void failed",
                )
                self.payments.mark_charge(charge_id, PaymentAttemptStatus.RECONCILING)
        return existing

    def _persistence_failed(
        self, attempt: BookingAttempt, authorization: Authorization, error: Exception
    ) -> None:
        """Undo what can be undone after the booking insert failed. Always raises."""
        if not authorization.charge_id:
            self._free_slot(attempt)
            if isinstance(error, SQLAlchemyError):
                raise ServiceUnavailable(
                    f"Could not save booking: {error}",
                    attempt_id=attempt.attempt_id, slot_id=attempt.slot.id,
                ) from error
            raise error
        voided = self._void_charge(authorization.charge_id)
        self._raise_mismatch(attempt, authorization, error, voided)

    def _void_charge(self, charge_id: str) -> bool:
        try:
            call_with_timeout(self.gateway.void, self._timeout, "payment void", charge_id)
        except BookingError as e:
            logger.error("Void of %s failed: %s", charge_id, e)
            return False
        self.payments.mark_charge(charge_id, PaymentAttemptStatus.VOIDED)
        return True

    def _raise_mismatch(
        self,
        attempt: BookingAttempt,
        authorization: Authorization,
        error: Exception,
        voided: bool,
    ) -> None:
        """Record a charge that has no booking behind it and raise PaymentBookingMismatch."""
        charge_id = authorization.charge_id
        record_id = self.reconciliation.record(
            ReconciliationKind.PAYMENT_BOOKING_MISMATCH,
            charge_id=charge_id,
            amount=authorization.amount,
            slot_id=attempt.slot.id,
            booking_id=attempt.booking_id,
            attempt_id=attempt.attempt_id,
            note=f"{type(error).__name__}: {error}; void {'succeeded' if voided else 'failed'}",
            status=ReconciliationStatus.VOIDED if voided else ReconciliationStatus.OPEN,
        )
        if voided:
            self._free_slot(attempt)
        else:
            self.payments.mark_charge(charge_id, PaymentAttemptStatus.RECONCILING)
        raise PaymentBookingMismatch(
            f"Charge {charge_id} succeeded but booking {attempt.booking_id} was not saved",
            charge_id=charge_id,
            reconciliation_id=record_id,
            booking_id=attempt.booking_id,
            slot_id=attempt.slot.id,
            attempt_id=attempt.attempt_id,
            voided=voided,
        ) from error

    def _free_slot(self, attempt: BookingAttempt) -> None:
        try:
            if not self.reservations.free_booked(attempt.slot.id, attempt.booking_id):
                self.reservations.release(attempt.slot.id, attempt.holder_id)
        except ServiceUnavailable as e:
            logger.critical(
                "Slot %s left booked for unsaved booking %s: %s",
                attempt.slot.id, attempt.booking_id, e,
            )

    def _refundable(self, booking: Booking, now: datetime) -> bool:
        notice = timedelta(hours=self.config.business.cancellation_notice_hours)
        return booking.starts_at - self.store.calendar.local_now(now) >= notice

    def _manual_refund(self, booking: Booking, amount: int, note: str) -> str:
        return self.reconciliation.record(
            ReconciliationKind.MANUAL_REFUND,
            charge_id=booking.payment_reference,
            amount=amount,
            slot_id=booking.slot_id,
            booking_id=booking.id,
            note=note,
        )

    def _transition(
        self,
        booking_id: str,
        trigger: BookingTrigger,
        now: datetime,
        cancellation_reason: Optional[str] = None,
    ) -> Booking:
        """Apply a lifecycle trigger with a conditional UPDATE on the current status."""
        try:
            with session_scope(self._sessions) as session:
                row = session.get(BookingRow, booking_id)
                if row is None:
                    raise ValidationError(f"Unknown booking: {booking_id}", field="booking_id")
                current = BookingStatus(row.status)
                target = BOOKING_LIFECYCLE.next_state(current, trigger)
                values = {"status": target.value, "updated_at": to_naive_utc(now)}
                if cancellation_reason is not None:
                    values["cancellation_reason"] = cancellation_reason
                result = session.execute(
                    update(BookingRow)
                    .where(BookingRow.id == booking_id, BookingRow.status == current.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidTransitionError(
                        f"Booking {booking_id} changed while it was being updated",
                        booking_id=booking_id,
                    )
                booking = _to_booking(row).model_copy(update=values | {"status": target})
        except SQLAlchemyError as e:
            raise ServiceUnavailable(
                f"Booking store unreachable: {e}", booking_id=booking_id
            ) from e
        logger.info("Booking %s: %s -> %s", booking_id, current.value, target.value)
        return booking
