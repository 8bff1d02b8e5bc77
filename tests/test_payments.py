"""Tests for the Stripe payment gateway adapter."""

from types import SimpleNamespace

import pytest
import stripe

from booking_engine.config import PaymentConfig
from booking_engine.errors import PaymentDeclined, ServiceUnavailable
from booking_engine.integrations.payments import Authorization, StripeGateway


@pytest.fixture
def stripe_calls(monkeypatch):
    """Replace the Stripe resources the gateway uses and record every call."""
    calls: dict[str, list] = {
        "create": [], "retrieve": [], "cancel": [], "refund": [], "search": [],
    }
    state = {
        "status": "succeeded", "retrieve_status": "requires_capture", "error": None,
        "found": [],
    }

    def create(**kwargs):
        calls["create"].append(kwargs)
        if state["error"] is not None:
            raise state["error"]
        return SimpleNamespace(id="pi_123", status=state["status"], amount=kwargs["amount"])

    def retrieve(charge_id):
        calls["retrieve"].append(charge_id)
        return SimpleNamespace(id=charge_id, status=state["retrieve_status"], amount=9500)

    def cancel(charge_id, **kwargs):
        calls["cancel"].append((charge_id, kwargs))
        return SimpleNamespace(id=charge_id, status="canceled")

    def refund(**kwargs):
        calls["refund"].append(kwargs)
        return SimpleNamespace(id="re_1", status="succeeded")

    def search(query, **kwargs):
        calls["search"].append(query)
        if state["error"] is not None:
            raise state["error"]
        return SimpleNamespace(data=state["found"])

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", cancel)
    monkeypatch.setattr(stripe.PaymentIntent, "search", search)
    monkeypatch.setattr(stripe.Refund, "create", refund)
    calls["state"] = state
    return calls


@pytest.fixture
def gateway():
    return StripeGateway(PaymentConfig(stripe_api_key="", currency="usd"))


class TestAuthorize:
    def test_success(self, gateway, stripe_calls):
        result = gateway.authorize(9500, "pm_card_visa", "ATT-1")
        assert result == Authorization(charge_id="pi_123", amount=9500, status="succeeded")
        sent = stripe_calls["create"][0]
        assert sent["amount"] == 9500
        assert sent["currency"] == "usd"
        assert sent["confirm"] is True
        assert sent["idempotency_key"] == "ATT-1"
        assert sent["metadata"] == {"idempotency_key": "ATT-1"}

    def test_missing_method_is_declined(self, gateway, stripe_calls):
        with pytest.raises(PaymentDeclined):
            gateway.authorize(9500, None, "ATT-1")
        assert stripe_calls["create"] == []

    def test_card_error_is_declined(self, gateway, stripe_calls):
        stripe_calls["state"]["error"] = stripe.CardError(
            "Your card was declined.", None, "card_declined"
        )
        with pytest.raises(PaymentDeclined) as exc_info:
            gateway.authorize(9500, "pm_card_chargeDeclined", "ATT-1")
        assert exc_info.value.context["code"] == "card_declined"

    def test_connection_error_is_unavailable(self, gateway, stripe_calls):
        stripe_calls["state"]["error"] = stripe.APIConnectionError("Network unreachable")
        with pytest.raises(ServiceUnavailable):
            gateway.authorize(9500, "pm_card_visa", "ATT-1")

    def test_action_required_is_declined(self, gateway, stripe_calls):
        stripe_calls["state"]["status"] = "requires_action"
        with pytest.raises(PaymentDeclined, match="requires_action"):
            gateway.authorize(9500, "pm_card_threeDSecure2Required", "ATT-1")


class TestRefundAndVoid:
    def test_refund(self, gateway, stripe_calls):
        result = gateway.refund("pi_123", 9500, "refund-BK-1")
        assert result.refund_id == "re_1"
        assert stripe_calls["refund"] == [
            {"payment_intent": "pi_123", "amount": 9500, "idempotency_key": "refund-BK-1"}
        ]

    def test_void_cancels_uncaptured_intent(self, gateway, stripe_calls):
        gateway.void("pi_123")
        assert stripe_calls["cancel"][0][0] == "pi_123"
        assert stripe_calls["refund"] == []

    def test_void_refunds_captured_intent(self, gateway, stripe_calls):
        stripe_calls["state"]["retrieve_status"] = "succeeded"
        gateway.void("pi_123")
        assert stripe_calls["cancel"] == []
        assert stripe_calls["refund"][0]["amount"] == 9500
        assert stripe_calls["refund"][0]["idempotency_key"] == "void-pi_123"

    def test_void_of_cancelled_intent_is_noop(self, gateway, stripe_calls):
        stripe_calls["state"]["retrieve_status"] = "canceled"
        gateway.void("pi_123")
        assert stripe_calls["cancel"] == []
        assert stripe_calls["refund"] == []


class TestFindCharge:
    def test_finds_live_intent_by_key(self, gateway, stripe_calls):
        stripe_calls["state"]["found"] = [
            SimpleNamespace(id="pi_old", status="canceled", amount=9500),
            SimpleNamespace(id="pi_live", status="requires_capture", amount=9500),
        ]
        found = gateway.find_charge("ATT-1-9500")
        assert found == Authorization(charge_id="pi_live", amount=9500, status="requires_capture")
        assert stripe_calls["search"] == ["metadata['idempotency_key']:'ATT-1-9500'"]

    def test_nothing_landed(self, gateway, stripe_calls):
        assert gateway.find_charge("ATT-1-9500") is None

    def test_search_error_is_unavailable(self, gateway, stripe_calls):
        stripe_calls["state"]["error"] = stripe.APIConnectionError("Network unreachable")
        with pytest.raises(ServiceUnavailable, match="Charge lookup failed"):
            gateway.find_charge("ATT-1-9500")
