"""Credit ledger data models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class CreditLedgerEntry(BaseModel):
    """Append-only ledger line. Negative amounts are debits."""

    id: int
    user_id: str
    amount: int
    reason: str
    booking_id: Optional[str] = None
    created_at: datetime


class LedgerResult(BaseModel):
    success: bool
    user_id: str
    amount: int
    balance: int
    entry_id: Optional[int] = None
    message: str = ""
