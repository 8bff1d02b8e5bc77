"""Tests for the DB-backed service catalog."""

import pytest

from booking_engine.engine.catalog import DEFAULT_SERVICES, ServiceCatalog
from booking_engine.errors import ServiceUnavailable, ValidationError

from conftest import TEST_SERVICES


class TestLookup:
    def test_get_seeds_and_returns_entry(self, catalog):
        service = catalog.get("cold_plunge")
        assert service.base_price == 8000
        assert service.duration_minutes == 60

    def test_unknown_service(self, catalog):
        with pytest.raises(ValidationError, match="Unknown service"):
            catalog.get("float_tank")

    def test_all_is_sorted(self, catalog):
        assert [s.id for s in catalog.all()] == ["cold_plunge", "infrared_sauna"]

    def test_defaults(self, sessions):
        catalog = ServiceCatalog(sessions)
        assert [s.id for s in catalog.all()] == sorted(s.id for s in DEFAULT_SERVICES)


class TestMatch:
    def test_exact_id(self, catalog):
        assert catalog.match("cold-plunge") == "cold_plunge"

    def test_alias(self, catalog):
        assert catalog.match("Infrared please") == "infrared_sauna"

    def test_alias_for_service_not_offered(self, catalog):
        assert catalog.match("contrast therapy") is None

    def test_no_match(self, catalog):
        assert catalog.match("massage") is None


class TestUpdatePrice:
    def test_new_price_is_seen_by_other_instances(self, catalog, sessions, clock):
        updated = catalog.update_price("cold_plunge", 9000)
        assert updated.base_price == 9000
        other = ServiceCatalog(sessions, list(TEST_SERVICES), clock=clock)
        assert other.get("cold_plunge").base_price == 9000

    def test_seeding_never_overwrites_price(self, catalog, sessions, clock):
        catalog.update_price("cold_plunge", 9000)
        again = ServiceCatalog(sessions, list(TEST_SERVICES), clock=clock)
        assert again.seed() == 0
        assert again.get("cold_plunge").base_price == 9000

    def test_negative_price(self, catalog):
        with pytest.raises(ValidationError, match="negative"):
            catalog.update_price("cold_plunge", -1)

    def test_unknown_service(self, catalog):
        with pytest.raises(ValidationError):
            catalog.update_price("float_tank", 5000)


class TestStoreDown:
    def test_lookup_raises_service_unavailable(self, unmigrated_sessions):
        with pytest.raises(ServiceUnavailable, match="Service catalog unreachable"):
            ServiceCatalog(unmigrated_sessions).get("cold_plunge")
