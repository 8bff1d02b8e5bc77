"""Tests for the payment attempt log."""

import pytest

from booking_engine.engine.payment_log import PaymentLog, payment_key
from booking_engine.errors import ServiceUnavailable
from booking_engine.persistence.db import session_scope
from booking_engine.schemas.payment_schema import PaymentAttemptStatus


class TestPaymentKey:
    def test_amount_is_part_of_key(self):
        assert payment_key("ATT-1", 9500) != payment_key("ATT-1", 10500)

    def test_same_amount_same_key(self):
        assert payment_key("ATT-1", 9500) == payment_key("ATT-1", 9500)


class TestLog:
    def test_begin_is_idempotent(self, payments):
        payments.begin("ATT-1", "ATT-1-9500", 9500)
        payments.begin("ATT-1", "ATT-1-9500", 9500)
        [payment] = payments.for_attempt("ATT-1")
        assert payment.status == PaymentAttemptStatus.PENDING
        assert payment.charge_id is None
        assert payment.unsettled

    def test_mark_records_charge(self, payments):
        payments.begin("ATT-1", "ATT-1-9500", 9500)
        assert payments.mark("ATT-1-9500", PaymentAttemptStatus.AUTHORIZED, "pi_1")
        [payment] = payments.for_attempt("ATT-1")
        assert payment.charge_id == "pi_1"
        assert payment.status == PaymentAttemptStatus.AUTHORIZED

    def test_mark_charge(self, payments):
        payments.begin("ATT-1", "ATT-1-9500", 9500)
        payments.mark("ATT-1-9500", PaymentAttemptStatus.AUTHORIZED, "pi_1")
        payments.mark_charge("pi_1", PaymentAttemptStatus.VOIDED)
        assert payments.unsettled("ATT-1") == []

    def test_booked_payment_keeps_its_status(self, payments, sessions):
        payments.begin("ATT-1", "ATT-1-9500", 9500)
        payments.mark("ATT-1-9500", PaymentAttemptStatus.AUTHORIZED, "pi_1")
        with session_scope(sessions) as session:
            payments.mark_booked("ATT-1-9500", session)
        # A late update from a concurrent finalize
        payments.mark("ATT-1-9500", PaymentAttemptStatus.AUTHORIZED, "pi_1")
        [payment] = payments.for_attempt("ATT-1")
        assert payment.status == PaymentAttemptStatus.BOOKED

    def test_unsettled_only_lists_open_payments(self, payments):
        payments.begin("ATT-1", "ATT-1-9500", 9500)
        payments.begin("ATT-1", "ATT-1-10500", 10500)
        payments.mark("ATT-1-9500", PaymentAttemptStatus.DECLINED)
        assert [p.amount for p in payments.unsettled("ATT-1")] == [10500]
        assert payments.unsettled("ATT-2") == []


class TestStoreDown:
    def test_begin_raises_service_unavailable(self, unmigrated_sessions):
        with pytest.raises(ServiceUnavailable):
            PaymentLog(unmigrated_sessions).begin("ATT-1", "ATT-1-9500", 9500)

    def test_mark_reports_failure(self, unmigrated_sessions):
        assert not PaymentLog(unmigrated_sessions).mark("ATT-1-9500", PaymentAttemptStatus.VOIDED)
