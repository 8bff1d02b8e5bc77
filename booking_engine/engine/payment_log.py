"""
Persisted record of every authorization an attempt has sent.

A row is written under the idempotency key before the gateway is called,
so a charge that landed behind a timeout can still be found and voided
after the amount changed or the attempt was abandoned.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_engine.errors import ServiceUnavailable
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import PaymentAttemptRow
from booking_engine.schemas.payment_schema import (
    UNSETTLED_STATUSES,
    PaymentAttempt,
    PaymentAttemptStatus,
)
from booking_engine.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

_UNSETTLED = [s.value for s in UNSETTLED_STATUSES]


def payment_key(attempt_id: str, amount: int) -> str:
    """Idempotency key for charging ``amount`` on behalf of ``attempt_id``.

    A new amount gets a new key, so the gateway can never replay an
    earlier charge for a different total.

    Examples:
        >>> payment_key("ATT-3f9c2a", 9500)
        'ATT-3f9c2a-9500'
    """
    return f"{attempt_id}-{amount}"


def _to_model(row: PaymentAttemptRow) -> PaymentAttempt:
    return PaymentAttempt(
        idempotency_key=row.idempotency_key,
        attempt_id=row.attempt_id,
        amount=row.amount,
        charge_id=row.charge_id,
        status=PaymentAttemptStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PaymentLog:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self._clock = clock

    def begin(self, attempt_id: str, idempotency_key: str, amount: int) -> None:
        """Record that a charge is about to be requested. Re-running is a no-op."""
        now = to_naive_utc(self._clock())
        try:
            with session_scope(self._sessions) as session:
                session.add(PaymentAttemptRow(
                    idempotency_key=idempotency_key,
                    attempt_id=attempt_id,
                    amount=amount,
                    status=PaymentAttemptStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                ))
        except IntegrityError:
            logger.debug("Payment %s already recorded", idempotency_key)
        except SQLAlchemyError as e:
            raise ServiceUnavailable(
                f"Could not record payment attempt: {e}", attempt_id=attempt_id
            ) from e

    def mark(
        self,
        idempotency_key: str,
        status: PaymentAttemptStatus,
        charge_id: Optional[str] = None,
    ) -> bool:
        """
        Move a payment to ``status``.

        Only unsettled rows move; a booked or voided payment keeps its
        status. Returns False when the store is down. The row then keeps
        its earlier status, which is never less cautious than the new one.
        """
        values = {"status": status.value, "updated_at": to_naive_utc(self._clock())}
        if charge_id is not None:
            values["charge_id"] = charge_id
        return self._update(PaymentAttemptRow.idempotency_key == idempotency_key, values)

    def mark_charge(self, charge_id: str, status: PaymentAttemptStatus) -> bool:
        return self._update(
            PaymentAttemptRow.charge_id == charge_id,
            {"status": status.value, "updated_at": to_naive_utc(self._clock())},
        )

    def mark_booked(self, idempotency_key: str, session: Session) -> None:
        """Tie the charge to a stored booking, inside the booking's transaction."""
        session.execute(
            update(PaymentAttemptRow)
            .where(PaymentAttemptRow.idempotency_key == idempotency_key)
            .values(
                status=PaymentAttemptStatus.BOOKED.value,
                updated_at=to_naive_utc(self._clock()),
            )
            .execution_options(synchronize_session=False)
        )

    def _update(self, condition, values: dict) -> bool:
        try:
            with session_scope(self._sessions) as session:
                session.execute(
                    update(PaymentAttemptRow)
                    .where(condition, PaymentAttemptRow.status.in_(_UNSETTLED))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error("Could not update payment attempt to %s: %s", values["status"], e)
            return False
        return True

    def for_attempt(self, attempt_id: str) -> list[PaymentAttempt]:
        try:
            with session_scope(self._sessions) as session:
                rows = session.scalars(
                    select(PaymentAttemptRow)
                    .where(PaymentAttemptRow.attempt_id == attempt_id)
                    .order_by(PaymentAttemptRow.created_at)
                ).all()
                return [_to_model(r) for r in rows]
        except SQLAlchemyError as e:
            raise ServiceUnavailable(
                f"Payment log unreachable: {e}", attempt_id=attempt_id
            ) from e

    def unsettled(self, attempt_id: str) -> list[PaymentAttempt]:
        """Payments that may hold money and are not tied to a booking."""
        return [p for p in self.for_attempt(attempt_id) if p.status in UNSETTLED_STATUSES]
