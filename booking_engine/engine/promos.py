"""
Promo code book.

Production codes (flat or percentage) and development bypass codes live in
the same table but never share a code path: bypass codes resolve only when
the book was built with ``allow_dev_bypass``, a flag fixed at startup from
configuration.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_engine.config import settings
from booking_engine.errors import ServiceUnavailable, ValidationError
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import PromoCodeRow
from booking_engine.schemas.promo_schema import PromoCode, PromoKind
from booking_engine.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

DEV_PROMO_CODES: list[PromoCode] = [
    PromoCode(code="DEV100", kind=PromoKind.DEV_BYPASS, description="Dev bypass - 100% off"),
    PromoCode(code="DEVTEST", kind=PromoKind.DEV_BYPASS, description="Dev testing - 100% off"),
    PromoCode(code="SKIPBOLT", kind=PromoKind.DEV_BYPASS, description="Skip payment - 100% off"),
]


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _to_model(row: PromoCodeRow) -> PromoCode:
    return PromoCode(
        code=row.code,
        kind=PromoKind(row.kind),
        value=row.value,
        expires_at=row.expires_at,
        max_uses=row.max_uses,
        description=row.description,
    )


class PromoBook:
    """DB-backed promo codes with expiry and atomic use counting."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        allow_dev_bypass: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self.allow_dev_bypass = (
            settings.promo.allow_dev_bypass if allow_dev_bypass is None else allow_dev_bypass
        )
        self._clock = clock

    def add(self, promo: PromoCode) -> PromoCode:
        if promo.is_dev_bypass and not self.allow_dev_bypass:
            raise ValidationError("Dev bypass codes are disabled in this environment")
        code = normalize_code(promo.code)
        try:
            with session_scope(self._sessions) as session:
                row = session.get(PromoCodeRow, code) or PromoCodeRow(code=code, uses=0)
                row.kind = promo.kind.value
                row.value = promo.value
                row.expires_at = to_naive_utc(promo.expires_at) if promo.expires_at else None
                row.max_uses = promo.max_uses
                row.description = promo.description
                session.add(row)
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Could not save promo code {code}: {e}") from e
        return promo.model_copy(update={"code": code})

    def seed_dev_codes(self) -> int:
        """Install the development bypass codes; no-op outside dev."""
        if not self.allow_dev_bypass:
            return 0
        for promo in DEV_PROMO_CODES:
            self.add(promo)
        logger.warning("Seeded %d dev bypass promo codes", len(DEV_PROMO_CODES))
        return len(DEV_PROMO_CODES)

    def resolve(self, code: str, now: Optional[datetime] = None) -> PromoCode:
        """Look up a code for use right now.

        Raises:
            ValidationError: unknown, expired, exhausted, or a bypass code
                outside a development environment.
        """
        normalized = normalize_code(code)
        try:
            with session_scope(self._sessions) as session:
                row = session.get(PromoCodeRow, normalized)
                promo = _to_model(row) if row else None
                uses = row.uses if row else 0
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Could not read promo code {normalized}: {e}") from e

        if promo is None:
            raise ValidationError(f"Invalid promo code: {normalized}", field="promo_code")
        if promo.is_dev_bypass and not self.allow_dev_bypass:
            logger.warning("Dev promo code %s attempted outside development", normalized)
            raise ValidationError(f"Invalid promo code: {normalized}", field="promo_code")
        current = to_naive_utc(now or self._clock())
        if promo.expires_at is not None and promo.expires_at <= current:
            raise ValidationError(f"Promo code {normalized} has expired", field="promo_code")
        if promo.max_uses is not None and uses >= promo.max_uses:
            raise ValidationError(
                f"Promo code {normalized} has reached its usage limit", field="promo_code"
            )
        return promo

    def redeem(self, code: str, session: Session) -> None:
        """Count one use inside the caller's transaction.

        The increment is conditional on remaining uses, so concurrent
        checkouts cannot exceed ``max_uses``.
        """
        normalized = normalize_code(code)
        result = session.execute(
            update(PromoCodeRow)
            .where(
                PromoCodeRow.code == normalized,
                or_(PromoCodeRow.max_uses.is_(None), PromoCodeRow.uses < PromoCodeRow.max_uses),
            )
            .values(uses=PromoCodeRow.uses + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(
                f"Promo code {normalized} has reached its usage limit", field="promo_code"
            )

    def uses(self, code: str) -> int:
        normalized = normalize_code(code)
        try:
            with session_scope(self._sessions) as session:
                value = session.scalar(
                    select(PromoCodeRow.uses).where(PromoCodeRow.code == normalized)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Could not read promo code {normalized}: {e}") from e
        return value or 0
