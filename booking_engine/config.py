"""
Centralized configuration with environment variable overrides.

All business rules, fees, timeouts, and storage settings are configurable
here. Nothing is hardcoded in the pricing, reservation, or payment logic.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

DEV_ENVIRONMENTS = ("development", "dev", "test")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes", "on")


def _app_env() -> str:
    # Unset means production: bypass codes need an explicit opt-in
    return os.getenv("APP_ENV", "production").strip().lower() or "production"


def _dev_bypass_enabled() -> bool:
    return _app_env() in DEV_ENVIRONMENTS or _safe_bool("DEV_PAYMENT_BYPASS", "false")


def parse_weekly_hours(raw: str) -> dict[int, Optional[tuple[time, time]]]:
    """Parse ``mon=09:00-17:00,sun=closed`` into a weekday -> (open, close) map.

    Days that are not mentioned are closed.

    Examples:
        >>> parse_weekly_hours("mon=09:00-17:00")[0]
        (datetime.time(9, 0), datetime.time(17, 0))
    """
    hours: dict[int, Optional[tuple[time, time]]] = {i: None for i in range(7)}
    for chunk in filter(None, (c.strip() for c in raw.split(","))):
        day, _, span = chunk.partition("=")
        day = day.strip().lower()[:3]
        if day not in WEEKDAYS:
            raise ValueError(f"Unknown weekday in BUSINESS_HOURS: {chunk!r}")
        span = span.strip().lower()
        if span == "closed":
            continue
        try:
            start_raw, end_raw = span.split("-")
            opens = datetime.strptime(start_raw.strip(), "%H:%M").time()
            closes = datetime.strptime(end_raw.strip(), "%H:%M").time()
        except ValueError:
            raise ValueError(f"Invalid hours in BUSINESS_HOURS: {chunk!r}") from None
        if closes <= opens:
            raise ValueError(f"Closing time must be after opening time: {chunk!r}")
        hours[WEEKDAYS.index(day)] = (opens, closes)
    return hours


def parse_holidays(raw: str) -> frozenset[date]:
    """Parse a comma-separated list of ISO dates."""
    try:
        return frozenset(
            date.fromisoformat(d.strip()) for d in raw.split(",") if d.strip()
        )
    except ValueError:
        raise ValueError(f"Invalid date in HOLIDAY_CLOSURES: {raw!r}") from None


@dataclass(frozen=True)
class BusinessConfig:
    """Business identity, opening hours, and booking policy."""

    name: str = os.getenv("BUSINESS_NAME", "Recovery Machine")
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "America/Los_Angeles")
    hours: str = os.getenv(
        "BUSINESS_HOURS",
        "mon=08:00-18:00,tue=08:00-18:00,wed=08:00-18:00,thu=08:00-18:00,"
        "fri=08:00-18:00,sat=09:00-17:00,sun=closed",
    )
    holidays: str = os.getenv("HOLIDAY_CLOSURES", "")
    slot_length_minutes: int = _safe_int("SLOT_LENGTH_MINUTES", "120")
    booking_advance_days: int = _safe_int("BOOKING_ADVANCE_DAYS", "30")
    cancellation_notice_hours: int = _safe_int("CANCELLATION_NOTICE_HOURS", "24")

    @property
    def weekly_hours(self) -> dict[int, Optional[tuple[time, time]]]:
        return parse_weekly_hours(self.hours)

    @property
    def holiday_dates(self) -> frozenset[date]:
        return parse_holidays(self.holidays)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class ReservationConfig:
    """Slot hold behaviour."""

    hold_ttl_minutes: int = _safe_int("HOLD_TTL_MINUTES", "10")


@dataclass(frozen=True)
class PricingConfig:
    """Add-on pricing constants and limits, all in cents."""

    family_member_cents: int = _safe_int("FAMILY_MEMBER_CENTS", "2500")
    extended_minute_cents: int = _safe_int("EXTENDED_MINUTE_CENTS", "200")
    extra_visit_percent: int = _safe_int("EXTRA_VISIT_PERCENT", "80")
    max_extra_visits: int = _safe_int("MAX_EXTRA_VISITS", "5")
    max_family_members: int = _safe_int("MAX_FAMILY_MEMBERS", "4")
    max_extended_minutes: int = _safe_int("MAX_EXTENDED_MINUTES", "30")


@dataclass(frozen=True)
class SetupFeeConfig:
    """Distance-based setup fee parameters."""

    base_fee_cents: int = _safe_int("SETUP_BASE_FEE_CENTS", "25000")
    free_radius_miles: int = _safe_int("SETUP_FREE_RADIUS_MILES", "10")
    per_mile_cents: int = _safe_int("SETUP_PER_MILE_CENTS", "500")
    max_fee_cents: int = _safe_int("SETUP_MAX_FEE_CENTS", "50000")


@dataclass(frozen=True)
class PaymentConfig:
    """Payment gateway credentials and collaborator call bounds."""

    stripe_api_key: str = os.getenv("STRIPE_API_KEY", "")
    currency: str = os.getenv("PAYMENT_CURRENCY", "usd")
    timeout_sec: float = _safe_float("COLLABORATOR_TIMEOUT_SEC", "30.0")
    retry_attempts: int = _safe_int("RETRY_ATTEMPTS", "3")
    retry_base_delay_sec: float = _safe_float("RETRY_BASE_DELAY_SEC", "0.5")
    retry_max_delay_sec: float = _safe_float("RETRY_MAX_DELAY_SEC", "5.0")
    retry_multiplier: float = _safe_float("RETRY_MULTIPLIER", "2.0")


@dataclass(frozen=True)
class PromoConfig:
    """Promo code behaviour. Dev bypass codes are resolved once, at startup."""

    allow_dev_bypass: bool = field(default_factory=_dev_bypass_enabled)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
    echo: bool = _safe_bool("DATABASE_ECHO", "false")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    reservation: ReservationConfig = field(default_factory=ReservationConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    setup_fee: SetupFeeConfig = field(default_factory=SetupFeeConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    promo: PromoConfig = field(default_factory=PromoConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_env: str = field(default_factory=_app_env)


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    try:
        config.business.tz
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"BUSINESS_TIMEZONE is not a known timezone: {config.business.timezone!r}"
        ) from None
    config.business.weekly_hours
    config.business.holiday_dates

    if config.business.slot_length_minutes < 15:
        raise ValueError(
            f"SLOT_LENGTH_MINUTES must be >= 15, got {config.business.slot_length_minutes}"
        )
    if config.business.booking_advance_days < 1:
        raise ValueError(
            f"BOOKING_ADVANCE_DAYS must be >= 1, got {config.business.booking_advance_days}"
        )
    if config.business.cancellation_notice_hours < 0:
        raise ValueError(
            "CANCELLATION_NOTICE_HOURS must be >= 0, "
            f"got {config.business.cancellation_notice_hours}"
        )
    if config.reservation.hold_ttl_minutes < 1:
        raise ValueError(
            f"HOLD_TTL_MINUTES must be >= 1, got {config.reservation.hold_ttl_minutes}"
        )
    if not 0 <= config.pricing.extra_visit_percent <= 100:
        raise ValueError(
            "EXTRA_VISIT_PERCENT must be between 0 and 100, "
            f"got {config.pricing.extra_visit_percent}"
        )

    for fee_name, fee_value in [
        ("FAMILY_MEMBER_CENTS", config.pricing.family_member_cents),
        ("EXTENDED_MINUTE_CENTS", config.pricing.extended_minute_cents),
        ("SETUP_BASE_FEE_CENTS", config.setup_fee.base_fee_cents),
        ("SETUP_PER_MILE_CENTS", config.setup_fee.per_mile_cents),
        ("SETUP_MAX_FEE_CENTS", config.setup_fee.max_fee_cents),
    ]:
        if fee_value < 0:
            raise ValueError(f"{fee_name} must be >= 0, got {fee_value}")

    if config.setup_fee.max_fee_cents < config.setup_fee.base_fee_cents:
        raise ValueError("SETUP_MAX_FEE_CENTS must be >= SETUP_BASE_FEE_CENTS")
    if config.payment.timeout_sec <= 0:
        raise ValueError(
            f"COLLABORATOR_TIMEOUT_SEC must be > 0, got {config.payment.timeout_sec}"
        )
    if config.payment.retry_attempts < 1:
        raise ValueError(
            f"RETRY_ATTEMPTS must be >= 1, got {config.payment.retry_attempts}"
        )
    if config.payment.retry_multiplier < 1.0:
        raise ValueError(
            f"RETRY_MULTIPLIER must be >= 1.0, got {config.payment.retry_multiplier}"
        )
    if config.promo.allow_dev_bypass and config.app_env.lower() == "production":
        raise ValueError("DEV_PAYMENT_BYPASS cannot be enabled when APP_ENV=production")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s' (%s)", config.business.name, config.app_env)
    if config.promo.allow_dev_bypass:
        logger.warning("Dev payment bypass codes are ENABLED for this process")
    return config


# Singleton instance
settings = load_config()
