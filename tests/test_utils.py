"""Tests for shared utility functions."""

import re
from datetime import datetime, timedelta, timezone

from booking_engine.utils import format_cents, new_id, normalize_phone, to_naive_utc


class TestNormalizePhone:
    def test_strips_spaces(self):
        assert normalize_phone("310 555 0142") == "3105550142"

    def test_strips_dashes(self):
        assert normalize_phone("310-555-0142") == "3105550142"

    def test_strips_parentheses(self):
        assert normalize_phone("(310) 555 0142") == "3105550142"

    def test_preserves_leading_plus(self):
        assert normalize_phone("+1 310 555 0142") == "+13105550142"

    def test_strips_whitespace(self):
        assert normalize_phone("  3105550142  ") == "3105550142"


class TestFormatCents:
    def test_whole_dollars(self):
        assert format_cents(8000) == "$80.00"

    def test_cents(self):
        assert format_cents(15505) == "$155.05"

    def test_thousands_separator(self):
        assert format_cents(1234500) == "$12,345.00"

    def test_negative(self):
        assert format_cents(-250) == "-$2.50"

    def test_zero(self):
        assert format_cents(0) == "$0.00"


class TestNewId:
    def test_prefix_and_shape(self):
        assert re.fullmatch(r"BK-[0-9A-F]{8}", new_id("BK"))

    def test_unique(self):
        assert len({new_id("ATT") for _ in range(100)}) == 100


class TestToNaiveUtc:
    def test_converts_aware_to_naive_utc(self):
        pacific = timezone(timedelta(hours=-7))
        moment = datetime(2026, 10, 19, 9, 0, tzinfo=pacific)
        assert to_naive_utc(moment) == datetime(2026, 10, 19, 16, 0)

    def test_naive_is_unchanged(self):
        moment = datetime(2026, 10, 19, 9, 0)
        assert to_naive_utc(moment) is moment
