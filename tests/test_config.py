"""Tests for configuration loading and validation."""

import dataclasses
from datetime import date, time

import pytest

from booking_engine.config import (
    AppConfig,
    _validate_config,
    parse_holidays,
    parse_weekly_hours,
)


def _with(config: AppConfig, section: str, **changes) -> AppConfig:
    return dataclasses.replace(
        config, **{section: dataclasses.replace(getattr(config, section), **changes)}
    )


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        config = AppConfig()
        _validate_config(config)  # should not raise

    def test_unknown_timezone(self):
        config = _with(AppConfig(), "business", timezone="Mars/Olympus_Mons")
        with pytest.raises(ValueError, match="BUSINESS_TIMEZONE"):
            _validate_config(config)

    def test_hold_ttl_must_be_positive(self):
        config = _with(AppConfig(), "reservation", hold_ttl_minutes=0)
        with pytest.raises(ValueError, match="HOLD_TTL_MINUTES"):
            _validate_config(config)

    def test_extra_visit_percent_above_100(self):
        config = _with(AppConfig(), "pricing", extra_visit_percent=120)
        with pytest.raises(ValueError, match="EXTRA_VISIT_PERCENT"):
            _validate_config(config)

    def test_negative_fee(self):
        config = _with(AppConfig(), "pricing", family_member_cents=-1)
        with pytest.raises(ValueError, match="FAMILY_MEMBER_CENTS"):
            _validate_config(config)

    def test_max_setup_fee_below_base(self):
        config = _with(AppConfig(), "setup_fee", base_fee_cents=30000, max_fee_cents=20000)
        with pytest.raises(ValueError, match="SETUP_MAX_FEE_CENTS"):
            _validate_config(config)

    def test_retry_attempts_at_least_one(self):
        config = _with(AppConfig(), "payment", retry_attempts=0)
        with pytest.raises(ValueError, match="RETRY_ATTEMPTS"):
            _validate_config(config)

    def test_dev_bypass_rejected_in_production(self):
        config = _with(AppConfig(), "promo", allow_dev_bypass=True)
        config = dataclasses.replace(config, app_env="production")
        with pytest.raises(ValueError, match="DEV_PAYMENT_BYPASS"):
            _validate_config(config)

    def test_production_without_bypass_is_valid(self):
        config = _with(AppConfig(), "promo", allow_dev_bypass=False)
        config = dataclasses.replace(config, app_env="production")
        _validate_config(config)

    def test_unset_app_env_means_production(self, monkeypatch):
        monkeypatch.delenv("APP_ENV", raising=False)
        monkeypatch.delenv("DEV_PAYMENT_BYPASS", raising=False)
        config = AppConfig()
        assert config.app_env == "production"
        assert config.promo.allow_dev_bypass is False
        _validate_config(config)

    def test_bypass_follows_development_env(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")
        assert AppConfig().promo.allow_dev_bypass is True

    def test_explicit_bypass_flag_in_production_is_rejected(self, monkeypatch):
        monkeypatch.delenv("APP_ENV", raising=False)
        monkeypatch.setenv("DEV_PAYMENT_BYPASS", "true")
        with pytest.raises(ValueError, match="DEV_PAYMENT_BYPASS"):
            _validate_config(AppConfig())

    def test_bad_business_hours(self):
        config = _with(AppConfig(), "business", hours="mon=18:00-08:00")
        with pytest.raises(ValueError, match="Closing time"):
            _validate_config(config)

    def test_safe_int_parsing(self):
        from booking_engine.config import _safe_int

        assert _safe_int("NONEXISTENT_VAR_12345", "42") == 42

    def test_safe_int_rejects_garbage(self, monkeypatch):
        from booking_engine.config import _safe_int

        monkeypatch.setenv("BOOKING_TEST_INT", "ten")
        with pytest.raises(ValueError, match="BOOKING_TEST_INT"):
            _safe_int("BOOKING_TEST_INT", "1")

    def test_safe_float_parsing(self):
        from booking_engine.config import _safe_float

        assert _safe_float("NONEXISTENT_VAR_12345", "3.14") == pytest.approx(3.14)

    def test_safe_bool_parsing(self, monkeypatch):
        from booking_engine.config import _safe_bool

        monkeypatch.setenv("BOOKING_TEST_FLAG", "Yes")
        assert _safe_bool("BOOKING_TEST_FLAG", "false") is True
        assert _safe_bool("NONEXISTENT_VAR_12345", "false") is False


class TestParseWeeklyHours:
    def test_parses_open_days(self):
        hours = parse_weekly_hours("mon=09:00-17:00,sat=10:00-14:00")
        assert hours[0] == (time(9, 0), time(17, 0))
        assert hours[5] == (time(10, 0), time(14, 0))

    def test_unmentioned_days_are_closed(self):
        hours = parse_weekly_hours("mon=09:00-17:00")
        assert hours[1] is None
        assert hours[6] is None

    def test_explicit_closed(self):
        assert parse_weekly_hours("sun=closed")[6] is None

    def test_full_day_names_accepted(self):
        assert parse_weekly_hours("Tuesday=08:00-12:00")[1] == (time(8, 0), time(12, 0))

    def test_unknown_weekday(self):
        with pytest.raises(ValueError, match="Unknown weekday"):
            parse_weekly_hours("funday=09:00-17:00")

    def test_malformed_span(self):
        with pytest.raises(ValueError, match="Invalid hours"):
            parse_weekly_hours("mon=9am-5pm")


class TestParseHolidays:
    def test_parses_dates(self):
        assert parse_holidays("2026-12-25, 2027-01-01") == frozenset(
            {date(2026, 12, 25), date(2027, 1, 1)}
        )

    def test_empty(self):
        assert parse_holidays("") == frozenset()

    def test_invalid_date(self):
        with pytest.raises(ValueError, match="HOLIDAY_CLOSURES"):
            parse_holidays("2026-13-01")
