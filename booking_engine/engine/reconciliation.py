"""
Reconciliation log for money that moved without a matching booking state.

Records are written when a charge succeeded but the booking could not be
stored, or when a cancellation refund could not be issued. Support works
through ``open_records`` and marks them resolved.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from booking_engine.errors import ServiceUnavailable
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import ReconciliationRow
from booking_engine.schemas.reconciliation_schema import (
    ReconciliationKind,
    ReconciliationRecord,
    ReconciliationStatus,
)
from booking_engine.utils import new_id, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _to_model(row: ReconciliationRow) -> ReconciliationRecord:
    return ReconciliationRecord(
        id=row.id,
        kind=ReconciliationKind(row.kind),
        status=ReconciliationStatus(row.status),
        charge_id=row.charge_id,
        amount=row.amount,
        slot_id=row.slot_id,
        booking_id=row.booking_id,
        attempt_id=row.attempt_id,
        note=row.note,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
    )


class ReconciliationLog:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self._clock = clock

    def record(
        self,
        kind: ReconciliationKind,
        *,
        charge_id: Optional[str],
        amount: int,
        slot_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
        note: str = "",
        status: ReconciliationStatus = ReconciliationStatus.OPEN,
    ) -> str:
        """
        Persist a record and return its reference.

        If the store itself is down the record goes to the CRITICAL log
        instead, under the same reference, so nothing is lost silently.
        """
        record_id = new_id("REC")
        try:
            with session_scope(self._sessions) as session:
                session.add(ReconciliationRow(
                    id=record_id,
                    kind=kind.value,
                    status=status.value,
                    charge_id=charge_id,
                    amount=amount,
                    slot_id=slot_id,
                    booking_id=booking_id,
                    attempt_id=attempt_id,
                    note=note,
                    created_at=to_naive_utc(self._clock()),
                ))
        except SQLAlchemyError as e:
            logger.critical(
                "UNPERSISTED reconciliation %s kind=%s charge=%s amount=%d slot=%s "
                "booking=%s attempt=%s note=%s (store error: %s)",
                record_id, kind.value, charge_id, amount, slot_id, booking_id,
                attempt_id, note, e,
            )
            return record_id
        logger.critical(
            "Reconciliation %s opened: %s charge=%s amount=%d booking=%s",
            record_id, kind.value, charge_id, amount, booking_id,
        )
        return record_id

    def get(self, record_id: str) -> Optional[ReconciliationRecord]:
        try:
            with session_scope(self._sessions) as session:
                row = session.get(ReconciliationRow, record_id)
                return _to_model(row) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Reconciliation log unreachable: {e}") from e

    def open_records(self) -> list[ReconciliationRecord]:
        return self._query(
            select(ReconciliationRow)
            .where(ReconciliationRow.status != ReconciliationStatus.RESOLVED.value)
            .order_by(ReconciliationRow.created_at)
        )

    def for_charge(self, charge_id: str) -> list[ReconciliationRecord]:
        return self._query(
            select(ReconciliationRow)
            .where(ReconciliationRow.charge_id == charge_id)
            .order_by(ReconciliationRow.created_at)
        )

    def for_attempt(self, attempt_id: str) -> list[ReconciliationRecord]:
        return self._query(
            select(ReconciliationRow)
            .where(ReconciliationRow.attempt_id == attempt_id)
            .order_by(ReconciliationRow.created_at)
        )

    def _query(self, statement) -> list[ReconciliationRecord]:
        try:
            with session_scope(self._sessions) as session:
                return [_to_model(r) for r in session.scalars(statement).all()]
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Reconciliation log unreachable: {e}") from e

    def resolve(self, record_id: str, note: Optional[str] = None) -> bool:
        try:
            with session_scope(self._sessions) as session:
                row = session.get(ReconciliationRow, record_id)
                if row is None or row.status == ReconciliationStatus.RESOLVED.value:
                    return False
                row.status = ReconciliationStatus.RESOLVED.value
                row.resolved_at = to_naive_utc(self._clock())
                if note:
                    row.note = f"{row.note}\n{note}" if row.note else note
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Could not resolve {record_id}: {e}") from e
        logger.info("Reconciliation %s resolved", record_id)
        return True
