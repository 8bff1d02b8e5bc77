"""
Location setup fee collaborator.

Setup fees depend on the distance between the customer's address and the
service base. ``ZipDistanceSetupFees`` estimates distance from the ZIP code
range; a geocoding-backed implementation only needs ``compute_setup_fee``.
"""

import logging
from typing import Optional, Protocol

from pydantic import BaseModel

from booking_engine.config import SetupFeeConfig, settings
from booking_engine.errors import ValidationError
from booking_engine.schemas.booking_schema import Address

logger = logging.getLogger(__name__)

# (first ZIP, last ZIP, miles from base)
ZIP_DISTANCE_BANDS: list[tuple[int, int, int]] = [
    (90210, 90299, 5),    # Beverly Hills / Westside
    (90001, 90099, 15),   # Central LA
    (91000, 91999, 25),   # Valleys
]
DEFAULT_DISTANCE_MILES = 12
MINUTES_PER_MILE = 1.5


class SetupFeeUnavailable(Exception):
    """The fee could not be computed right now; callers fall back to the cap."""


class SetupFeeEstimate(BaseModel):
    base_fee: int
    distance_fee: int
    total: int
    distance_miles: int
    travel_minutes: int


class SetupFeeService(Protocol):
    def compute_setup_fee(self, address: Address) -> int: ...


class ZipDistanceSetupFees:
    def __init__(
        self,
        config: Optional[SetupFeeConfig] = None,
        bands: Optional[list[tuple[int, int, int]]] = None,
    ) -> None:
        self.config = config or settings.setup_fee
        self.bands = bands if bands is not None else ZIP_DISTANCE_BANDS

    @property
    def max_service_miles(self) -> int:
        """Furthest distance whose fee stays under the cap."""
        if self.config.per_mile_cents == 0:
            return 10_000
        headroom = self.config.max_fee_cents - self.config.base_fee_cents
        return self.config.free_radius_miles + headroom // self.config.per_mile_cents

    def distance_miles(self, zip_code: str) -> int:
        digits = zip_code.strip()[:5]
        if not digits.isdigit() or len(digits) != 5:
            raise ValidationError(f"Invalid ZIP code: {zip_code!r}", field="zip_code")
        zip_number = int(digits)
        for first, last, miles in self.bands:
            if first <= zip_number <= last:
                return miles
        return DEFAULT_DISTANCE_MILES

    def in_service_area(self, address: Address) -> bool:
        return self.distance_miles(address.zip_code) <= self.max_service_miles

    def estimate(self, address: Address) -> SetupFeeEstimate:
        miles = self.distance_miles(address.zip_code)
        extra_miles = max(0, miles - self.config.free_radius_miles)
        distance_fee = extra_miles * self.config.per_mile_cents
        total = min(self.config.base_fee_cents + distance_fee, self.config.max_fee_cents)
        return SetupFeeEstimate(
            base_fee=self.config.base_fee_cents,
            distance_fee=distance_fee,
            total=total,
            distance_miles=miles,
            travel_minutes=round(miles * MINUTES_PER_MILE),
        )

    def compute_setup_fee(self, address: Address) -> int:
        if not self.in_service_area(address):
            raise ValidationError(
                f"{address.zip_code} is outside our service area", field="zip_code"
            )
        estimate = self.estimate(address)
        logger.debug(
            "Setup fee for %s: %d (%d miles)", address.zip_code, estimate.total, estimate.distance_miles
        )
        return estimate.total
