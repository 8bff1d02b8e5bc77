"""Payment attempt models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PaymentAttemptStatus(str, Enum):
    # Request sent; whether money moved is unknown
    PENDING = "pending"
    AUTHORIZED = "authorized"
    DECLINED = "declined"
    BOOKED = "booked"
    VOIDED = "voided"
    NOT_CHARGED = "not_charged"
    # Handed to a reconciliation record
    RECONCILING = "reconciling"


UNSETTLED_STATUSES = frozenset({PaymentAttemptStatus.PENDING, PaymentAttemptStatus.AUTHORIZED})


class PaymentAttempt(BaseModel):
    idempotency_key: str
    attempt_id: str
    amount: int
    charge_id: Optional[str] = None
    status: PaymentAttemptStatus
    created_at: datetime
    updated_at: datetime

    @property
    def unsettled(self) -> bool:
        return self.status in UNSETTLED_STATUSES
