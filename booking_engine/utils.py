"""Shared utilities used across the booking engine."""

import re
import uuid
from datetime import datetime, timezone


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("(310) 555-0142")
        '3105550142'
        >>> normalize_phone("+1 310 555 0142")
        '+13105550142'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def format_cents(cents: int) -> str:
    """Format an integer amount of cents for display.

    Examples:
        >>> format_cents(8000)
        '$80.00'
        >>> format_cents(-250)
        '-$2.50'
    """
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}${whole:,}.{frac:02d}"


def new_id(prefix: str) -> str:
    """Short, human-readable identifier such as ``BK-9F2C1A07``."""
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_naive_utc(moment: datetime) -> datetime:
    """Drop tzinfo after converting to UTC; storage columns hold naive UTC."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
