"""
Credit ledger.

Append-only entries per user; a user's balance is the sum of their entries.
A running balance on ``credit_accounts`` arbitrates concurrent debits: the
balance check and the debit are one conditional UPDATE, written in the same
transaction as the ledger entry, so two debits can never both pass against
the same credit.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_engine.errors import CreditInsufficient, ServiceUnavailable, ValidationError
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import CreditAccountRow, CreditEntryRow
from booking_engine.schemas.ledger_schema import CreditLedgerEntry, LedgerResult
from booking_engine.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class CreditLedger:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self._clock = clock

    def balance(self, user_id: str) -> int:
        try:
            with session_scope(self._sessions) as session:
                total = session.scalar(
                    select(func.coalesce(func.sum(CreditEntryRow.amount), 0))
                    .where(CreditEntryRow.user_id == user_id)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Credit ledger unreachable: {e}", user_id=user_id) from e
        return int(total or 0)

    def entries(self, user_id: str) -> list[CreditLedgerEntry]:
        try:
            with session_scope(self._sessions) as session:
                rows = session.scalars(
                    select(CreditEntryRow)
                    .where(CreditEntryRow.user_id == user_id)
                    .order_by(CreditEntryRow.id)
                ).all()
                return [
                    CreditLedgerEntry(
                        id=r.id, user_id=r.user_id, amount=r.amount, reason=r.reason,
                        booking_id=r.booking_id, created_at=r.created_at,
                    )
                    for r in rows
                ]
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Credit ledger unreachable: {e}", user_id=user_id) from e

    def apply_credits(
        self,
        user_id: str,
        amount: int,
        reason: str = "booking",
        booking_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """
        Debit ``amount`` if, and only if, the balance covers it.

        Pass ``session`` to make the debit part of a larger transaction
        (the booking insert); otherwise the debit commits on its own.
        """
        if amount < 0:
            raise ValidationError("Credit debit must be positive", field="amount")
        if amount == 0:
            return LedgerResult(success=True, user_id=user_id, amount=0,
                                balance=self.balance(user_id))
        if session is not None:
            return self._debit(session, user_id, amount, reason, booking_id)
        try:
            with session_scope(self._sessions) as own:
                return self._debit(own, user_id, amount, reason, booking_id)
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Credit ledger unreachable: {e}", user_id=user_id) from e

    def _debit(
        self, session: Session, user_id: str, amount: int, reason: str, booking_id: Optional[str]
    ) -> LedgerResult:
        result = session.execute(
            update(CreditAccountRow)
            .where(CreditAccountRow.user_id == user_id, CreditAccountRow.balance >= amount)
            .values(
                balance=CreditAccountRow.balance - amount,
                version=CreditAccountRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        current = session.scalar(
            select(CreditAccountRow.balance).where(CreditAccountRow.user_id == user_id)
        ) or 0
        if result.rowcount != 1:
            logger.info("Debit of %d refused for %s (balance %d)", amount, user_id, current)
            return LedgerResult(
                success=False, user_id=user_id, amount=0, balance=current,
                message=f"Insufficient credit: balance {current}, requested {amount}",
            )
        entry = CreditEntryRow(
            user_id=user_id, amount=-amount, reason=reason, booking_id=booking_id,
            created_at=to_naive_utc(self._clock()),
        )
        session.add(entry)
        session.flush()
        logger.info("Debited %d credits from %s (%s); balance %d", amount, user_id, reason, current)
        return LedgerResult(
            success=True, user_id=user_id, amount=-amount, balance=current, entry_id=entry.id,
        )

    def debit(
        self,
        user_id: str,
        amount: int,
        reason: str = "booking",
        booking_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """``apply_credits`` that raises CreditInsufficient instead of returning a failure."""
        result = self.apply_credits(user_id, amount, reason, booking_id, session)
        if not result.success:
            raise CreditInsufficient(
                result.message, user_id=user_id, booking_id=booking_id, balance=result.balance
            )
        return result

    def _ensure_account(self, user_id: str) -> None:
        try:
            with session_scope(self._sessions) as session:
                if session.get(CreditAccountRow, user_id) is None:
                    session.add(CreditAccountRow(user_id=user_id, balance=0, version=0))
        except IntegrityError:
            # Created concurrently by another writer
            logger.debug("Credit account %s already exists", user_id)

    def grant_credits(
        self, user_id: str, amount: int, reason: str, booking_id: Optional[str] = None
    ) -> LedgerResult:
        """Append a positive entry (refund, referral reward, goodwill)."""
        if amount <= 0:
            raise ValidationError("Credit grant must be positive", field="amount")
        try:
            self._ensure_account(user_id)
            with session_scope(self._sessions) as session:
                session.execute(
                    update(CreditAccountRow)
                    .where(CreditAccountRow.user_id == user_id)
                    .values(
                        balance=CreditAccountRow.balance + amount,
                        version=CreditAccountRow.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                entry = CreditEntryRow(
                    user_id=user_id, amount=amount, reason=reason, booking_id=booking_id,
                    created_at=to_naive_utc(self._clock()),
                )
                session.add(entry)
                session.flush()
                entry_id = entry.id
                current = session.scalar(
                    select(CreditAccountRow.balance).where(CreditAccountRow.user_id == user_id)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Credit ledger unreachable: {e}", user_id=user_id) from e
        logger.info("Granted %d credits to %s (%s); balance %d", amount, user_id, reason, current)
        return LedgerResult(
            success=True, user_id=user_id, amount=amount, balance=current, entry_id=entry_id,
        )

    def adjust(self, user_id: str, amount: int, reason: str) -> LedgerResult:
        """Admin adjustment by a signed amount; never takes the balance below zero."""
        if amount == 0:
            raise ValidationError("Adjustment amount cannot be zero", field="amount")
        if amount > 0:
            return self.grant_credits(user_id, amount, reason)
        return self.debit(user_id, -amount, reason)
