"""Reconciliation record models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ReconciliationKind(str, Enum):
    PAYMENT_BOOKING_MISMATCH = "payment_booking_mismatch"
    MANUAL_REFUND = "manual_refund"


class ReconciliationStatus(str, Enum):
    OPEN = "open"
    # Authorization was voided automatically; kept for the audit trail
    VOIDED = "voided"
    RESOLVED = "resolved"


class ReconciliationRecord(BaseModel):
    id: str
    kind: ReconciliationKind
    status: ReconciliationStatus
    charge_id: Optional[str] = None
    amount: int = 0
    slot_id: Optional[str] = None
    booking_id: Optional[str] = None
    attempt_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
