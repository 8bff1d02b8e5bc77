"""
Payment gateway collaborator.

The orchestrator talks to any object with ``authorize`` / ``refund`` /
``void``. Every call that moves money takes an idempotency key, so a retried
call after a timeout can never charge twice.
"""

import logging
from typing import Optional, Protocol

import stripe
from pydantic import BaseModel

from booking_engine.config import PaymentConfig, settings
from booking_engine.errors import PaymentDeclined, ServiceUnavailable

logger = logging.getLogger(__name__)

# PaymentIntent states that can still be cancelled instead of refunded
CANCELABLE_STATES = frozenset({
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "requires_capture",
    "processing",
})


class Authorization(BaseModel):
    """Outcome of a successful authorization."""

    charge_id: Optional[str] = None
    amount: int
    status: str = "succeeded"
    # True when nothing was sent to the gateway (credits or dev bypass)
    skipped: bool = False

    @classmethod
    def zero(cls, reason: str) -> "Authorization":
        return cls(charge_id=None, amount=0, status=reason, skipped=True)


class RefundResult(BaseModel):
    refund_id: str
    charge_id: str
    amount: int
    status: str


class PaymentGateway(Protocol):
    def authorize(
        self, amount: int, method: Optional[str], idempotency_key: str
    ) -> Authorization: ...

    def refund(self, charge_id: str, amount: int, idempotency_key: str) -> RefundResult: ...

    def void(self, charge_id: str) -> None: ...

    def find_charge(self, idempotency_key: str) -> Optional[Authorization]: ...


class StripeGateway:
    """``PaymentGateway`` backed by Stripe PaymentIntents."""

    def __init__(self, config: Optional[PaymentConfig] = None) -> None:
        self.config = config or settings.payment
        if self.config.stripe_api_key:
            stripe.api_key = self.config.stripe_api_key

    def authorize(
        self, amount: int, method: Optional[str], idempotency_key: str
    ) -> Authorization:
        if not method:
            raise PaymentDeclined("No payment method supplied", attempt_id=idempotency_key)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self.config.currency,
                payment_method=method,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"idempotency_key": idempotency_key},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            logger.info("Card declined for %s: %s", idempotency_key, e.user_message)
            raise PaymentDeclined(
                e.user_message or "Card declined", attempt_id=idempotency_key, code=e.code
            ) from e
        except stripe.StripeError as e:
            logger.error("Stripe authorize failed for %s: %s", idempotency_key, e)
            raise ServiceUnavailable(
                f"Payment gateway error: {e}", attempt_id=idempotency_key
            ) from e

        if intent.status not in ("succeeded", "requires_capture", "processing"):
            # 3-D Secure and similar flows cannot complete server-side
            raise PaymentDeclined(
                f"Payment requires further action ({intent.status})",
                attempt_id=idempotency_key, charge_id=intent.id,
            )
        logger.info("Authorized %d for %s as %s", amount, idempotency_key, intent.id)
        return Authorization(charge_id=intent.id, amount=intent.amount, status=intent.status)

    def refund(self, charge_id: str, amount: int, idempotency_key: str) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=charge_id,
                amount=amount,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe refund of %d on %s failed: %s", amount, charge_id, e)
            raise ServiceUnavailable(f"Refund failed: {e}", charge_id=charge_id) from e
        logger.info("Refunded %d on %s (%s)", amount, charge_id, refund.id)
        return RefundResult(
            refund_id=refund.id, charge_id=charge_id, amount=amount, status=refund.status
        )

    def void(self, charge_id: str) -> None:
        """Cancel the intent if Stripe still allows it, else refund it in full."""
        try:
            intent = stripe.PaymentIntent.retrieve(charge_id)
            if intent.status == "canceled":
                return
            if intent.status in CANCELABLE_STATES:
                stripe.PaymentIntent.cancel(charge_id, idempotency_key=f"void-{charge_id}")
                logger.info("Voided payment %s", charge_id)
                return
        except stripe.StripeError as e:
            logger.error("Stripe void of %s failed: %s", charge_id, e)
            raise ServiceUnavailable(f"Void failed: {e}", charge_id=charge_id) from e
        self.refund(charge_id, intent.amount, idempotency_key=f"void-{charge_id}")

    def find_charge(self, idempotency_key: str) -> Optional[Authorization]:
        """Look up a live charge made under ``idempotency_key``, if any landed."""
        try:
            result = stripe.PaymentIntent.search(
                query=f"metadata['idempotency_key']:'{idempotency_key}'"
            )
        except stripe.StripeError as e:
            logger.error("Stripe search for %s failed: %s", idempotency_key, e)
            raise ServiceUnavailable(
                f"Charge lookup failed: {e}", idempotency_key=idempotency_key
            ) from e
        for intent in result.data:
            if intent.status != "canceled":
                return Authorization(charge_id=intent.id, amount=intent.amount, status=intent.status)
        return None
