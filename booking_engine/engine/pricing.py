"""
Pricing calculator.

Pure functions: no I/O, no clock, deterministic for identical inputs.
All amounts are integer cents.

Usage:
    quote = compute_price(service, AddOns(family_members=2), setup_fee=1500, promo=promo)
    assert quote.total == max(0, quote.subtotal + quote.setup_fee - quote.discount)
"""

import hashlib
import json
from typing import Optional

from booking_engine.config import PricingConfig, settings
from booking_engine.errors import ValidationError
from booking_engine.schemas.booking_schema import AddOnCosts, AddOns, PriceQuote, Service
from booking_engine.schemas.promo_schema import PromoCode, PromoKind


def _percent_of(amount: int, percent: int) -> int:
    """Integer percentage with half-up rounding."""
    return (amount * percent + 50) // 100


def validate_add_ons(add_ons: AddOns, config: Optional[PricingConfig] = None) -> None:
    """Reject add-on quantities outside the bookable limits."""
    config = config or settings.pricing
    for field_name, value, limit in [
        ("extra_visits", add_ons.extra_visits, config.max_extra_visits),
        ("family_members", add_ons.family_members, config.max_family_members),
        ("extended_minutes", add_ons.extended_minutes, config.max_extended_minutes),
    ]:
        if value < 0 or value > limit:
            raise ValidationError(
                f"{field_name} must be between 0 and {limit}, got {value}",
                field=field_name,
            )


def add_on_costs(
    service: Service, add_ons: AddOns, config: Optional[PricingConfig] = None
) -> AddOnCosts:
    config = config or settings.pricing
    return AddOnCosts(
        extra_visits=add_ons.extra_visits
        * _percent_of(service.base_price, config.extra_visit_percent),
        family_members=add_ons.family_members * config.family_member_cents,
        extended_time=add_ons.extended_minutes * config.extended_minute_cents,
    )


def promo_discount(gross: int, promo: Optional[PromoCode], allow_dev_bypass: bool) -> int:
    """Discount in cents for ``gross`` (subtotal + setup fee), never above gross."""
    if promo is None:
        return 0
    if promo.kind == PromoKind.DEV_BYPASS:
        if not allow_dev_bypass:
            raise ValidationError(f"Invalid promo code: {promo.code}", field="promo_code")
        return gross
    if promo.kind == PromoKind.PERCENT:
        return min(gross, _percent_of(gross, promo.value))
    return min(gross, promo.value)


def split_credit(total: int, credit_balance: int) -> tuple[int, int]:
    """Return ``(credits_used, amount_due)``; excess credit stays in the ledger."""
    credits_used = max(0, min(credit_balance, total))
    return credits_used, total - credits_used


def quote_fingerprint(
    service: Service, add_ons: AddOns, setup_fee: int, promo: Optional[PromoCode]
) -> str:
    payload = {
        "service_id": service.id,
        "base_price": service.base_price,
        "duration_minutes": service.duration_minutes,
        "add_ons": add_ons.model_dump(),
        "setup_fee": setup_fee,
        "promo": None if promo is None else [promo.code, promo.kind.value, promo.value],
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def compute_price(
    service: Service,
    add_ons: AddOns,
    setup_fee: int = 0,
    promo: Optional[PromoCode] = None,
    credit_balance: Optional[int] = None,
    *,
    allow_dev_bypass: bool = False,
    config: Optional[PricingConfig] = None,
) -> PriceQuote:
    """
    Price a prospective booking.

    Args:
        service: Catalog entry being booked.
        add_ons: Extra visits, family members, extended minutes.
        setup_fee: Location surcharge from the setup-fee collaborator.
        promo: At most one resolved promo code.
        credit_balance: When given, the quote previews how much credit would
            cover; ``total`` is unaffected.
        allow_dev_bypass: Must be set explicitly for DEV_BYPASS codes.

    Raises:
        ValidationError: add-ons out of range, negative setup fee, or a dev
            bypass code without ``allow_dev_bypass``.
    """
    config = config or settings.pricing
    validate_add_ons(add_ons, config)
    if setup_fee < 0:
        raise ValidationError("Setup fee cannot be negative", field="setup_fee")

    costs = add_on_costs(service, add_ons, config)
    subtotal = service.base_price + costs.total
    gross = subtotal + setup_fee
    discount = promo_discount(gross, promo, allow_dev_bypass)
    total = max(0, gross - discount)

    credits_applicable = amount_due = None
    if credit_balance is not None:
        credits_applicable, amount_due = split_credit(total, credit_balance)

    return PriceQuote(
        service_id=service.id,
        base_price=service.base_price,
        duration_minutes=service.duration_minutes,
        add_ons=add_ons,
        add_on_costs=costs,
        subtotal=subtotal,
        setup_fee=setup_fee,
        discount=discount,
        total=total,
        promo_code=promo.code if promo else None,
        bypass_payment=bool(promo and promo.is_dev_bypass),
        credits_applicable=credits_applicable,
        amount_due=amount_due,
        fingerprint=quote_fingerprint(service, add_ons, setup_fee, promo),
    )
