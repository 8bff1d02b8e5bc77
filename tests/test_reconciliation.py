"""Tests for the reconciliation log."""

import logging

import pytest

from booking_engine.engine.reconciliation import ReconciliationLog
from booking_engine.errors import ServiceUnavailable
from booking_engine.persistence.db import build_engine, make_session_factory
from booking_engine.schemas.reconciliation_schema import (
    ReconciliationKind,
    ReconciliationStatus,
)


class TestRecord:
    def test_record_is_open(self, reconciliation):
        record_id = reconciliation.record(
            ReconciliationKind.PAYMENT_BOOKING_MISMATCH,
            charge_id="pi_0001", amount=15500, slot_id="cold_plunge-20261020-1000",
            booking_id="BK-1", attempt_id="ATT-1", note="disk full",
        )
        record = reconciliation.get(record_id)
        assert record.status == ReconciliationStatus.OPEN
        assert record.charge_id == "pi_0001"
        assert record.amount == 15500
        assert [r.id for r in reconciliation.open_records()] == [record_id]

    def test_for_charge(self, reconciliation):
        reconciliation.record(ReconciliationKind.MANUAL_REFUND, charge_id="pi_7", amount=100)
        reconciliation.record(ReconciliationKind.MANUAL_REFUND, charge_id="pi_8", amount=200)
        assert [r.amount for r in reconciliation.for_charge("pi_7")] == [100]

    def test_resolve(self, reconciliation):
        record_id = reconciliation.record(
            ReconciliationKind.MANUAL_REFUND, charge_id="pi_1", amount=8000
        )
        assert reconciliation.resolve(record_id, note="refunded from dashboard")
        record = reconciliation.get(record_id)
        assert record.status == ReconciliationStatus.RESOLVED
        assert record.resolved_at is not None
        assert "refunded from dashboard" in record.note
        assert reconciliation.open_records() == []

    def test_resolve_twice(self, reconciliation):
        record_id = reconciliation.record(
            ReconciliationKind.MANUAL_REFUND, charge_id="pi_1", amount=8000
        )
        reconciliation.resolve(record_id)
        assert not reconciliation.resolve(record_id)

    def test_resolve_unknown(self, reconciliation):
        assert not reconciliation.resolve("REC-404")


class TestStoreDown:
    def test_falls_back_to_critical_log(self, tmp_path, caplog):
        # No tables: every write fails
        engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}", echo=False)
        log = ReconciliationLog(make_session_factory(engine))
        with caplog.at_level(logging.CRITICAL):
            record_id = log.record(
                ReconciliationKind.PAYMENT_BOOKING_MISMATCH, charge_id="pi_9", amount=500,
            )
        assert record_id.startswith("REC-")
        assert "UNPERSISTED" in caplog.text
        assert "pi_9" in caplog.text
        engine.dispose()

    def test_reads_raise_service_unavailable(self, unmigrated_sessions):
        log = ReconciliationLog(unmigrated_sessions)
        with pytest.raises(ServiceUnavailable):
            log.get("REC-1")
        with pytest.raises(ServiceUnavailable):
            log.open_records()
        with pytest.raises(ServiceUnavailable):
            log.for_attempt("ATT-1")

    def test_resolve_raises_service_unavailable(self, unmigrated_sessions):
        with pytest.raises(ServiceUnavailable, match="REC-1"):
            ReconciliationLog(unmigrated_sessions).resolve("REC-1")
