"""Service catalog with base prices and durations."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from booking_engine.errors import ServiceUnavailable, ValidationError
from booking_engine.persistence.db import SessionLocal, session_scope
from booking_engine.persistence.models import ServiceRow
from booking_engine.schemas.booking_schema import Service
from booking_engine.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SERVICES: list[Service] = [
    Service(id="cold_plunge", name="Cold Plunge Session", duration_minutes=60, base_price=17500),
    Service(id="infrared_sauna", name="Infrared Sauna Session", duration_minutes=60, base_price=17500),
    Service(id="combo_package", name="Complete Recovery Experience", duration_minutes=60, base_price=20000),
]

SERVICE_ALIASES: dict[str, str] = {
    "plunge": "cold_plunge", "cold": "cold_plunge", "ice bath": "cold_plunge",
    "sauna": "infrared_sauna", "infrared": "infrared_sauna",
    "combo": "combo_package", "contrast": "combo_package", "both": "combo_package",
}


def _to_model(row: ServiceRow) -> Service:
    return Service(
        id=row.id,
        name=row.name,
        duration_minutes=row.duration_minutes,
        base_price=row.base_price,
    )


class ServiceCatalog:
    """
    Current prices for every bookable service.

    Prices live in the ``services`` table and every lookup reads them, so a
    price change made by one process is seen by all of them and outstanding
    quotes detect the drift. ``services`` seeds entries that are missing;
    it never overwrites a price already in the store.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        services: Optional[list[Service]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory or SessionLocal
        self._defaults = list(services if services is not None else DEFAULT_SERVICES)
        self._clock = clock
        self._seeded = False
        self._lock = threading.Lock()

    def seed(self) -> int:
        """Insert the default entries that the store does not have yet."""
        now = to_naive_utc(self._clock())
        added = 0
        try:
            with session_scope(self._sessions) as session:
                known = set(session.scalars(select(ServiceRow.id)).all())
                for service in self._defaults:
                    if service.id in known:
                        continue
                    session.add(ServiceRow(
                        id=service.id,
                        name=service.name,
                        duration_minutes=service.duration_minutes,
                        base_price=service.base_price,
                        version=1,
                        updated_at=now,
                    ))
                    added += 1
        except IntegrityError:
            # Another process seeded the same entries first
            added = 0
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Service catalog unreachable: {e}") from e
        self._seeded = True
        if added:
            logger.info("Seeded %d catalog entries", added)
        return added

    def _ensure_seeded(self) -> None:
        if self._seeded:
            return
        with self._lock:
            if not self._seeded:
                self.seed()

    def get(self, service_id: str) -> Service:
        self._ensure_seeded()
        try:
            with session_scope(self._sessions) as session:
                row = session.get(ServiceRow, service_id)
                service = _to_model(row) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Service catalog unreachable: {e}") from e
        if service is None:
            raise ValidationError(f"Unknown service: {service_id!r}", field="service_id")
        return service

    def all(self) -> list[Service]:
        self._ensure_seeded()
        try:
            with session_scope(self._sessions) as session:
                rows = session.scalars(select(ServiceRow).order_by(ServiceRow.id)).all()
                return [_to_model(r) for r in rows]
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Service catalog unreachable: {e}") from e

    def update_price(self, service_id: str, base_price: int) -> Service:
        """Replace a service's base price (admin pricing settings)."""
        if base_price < 0:
            raise ValidationError("Base price cannot be negative", field="base_price")
        current = self.get(service_id)
        try:
            with session_scope(self._sessions) as session:
                session.execute(
                    update(ServiceRow)
                    .where(ServiceRow.id == service_id)
                    .values(
                        base_price=base_price,
                        version=ServiceRow.version + 1,
                        updated_at=to_naive_utc(self._clock()),
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise ServiceUnavailable(f"Could not update price for {service_id}: {e}") from e
        logger.info(
            "Price for %s changed from %d to %d", service_id, current.base_price, base_price
        )
        return current.model_copy(update={"base_price": base_price})

    def match(self, query: str) -> Optional[str]:
        """Match a free-text query to a service id. Returns None if no match."""
        normalized = query.lower().strip().replace("-", " ")
        known = {s.id for s in self.all()}
        for sid in known:
            if sid == normalized.replace(" ", "_"):
                return sid
        for alias, service_id in SERVICE_ALIASES.items():
            if alias in normalized and service_id in known:
                return service_id
        return None
