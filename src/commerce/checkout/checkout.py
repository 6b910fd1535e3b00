"""Checkout: turn a cart into a PENDING order with stock held and payment started.

Flow:
    1. Fraud screening; ``block`` stops here with nothing created.
    2. CreateOrder → PENDING order.
    3. Reserve every line, or none. Any reservation failure cancels the
       order and re-raises; no payment intent exists.
    4. Create the payment intent and record it; payment status PROCESSING.
    5. A ``review`` verdict flags the order for manual review.

The payment outcome arrives later through the payment webhook. Until then
the reservation is HELD and the expiry sweeper releases it if the hold runs
out first.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from commerce.errors import ConcurrencyExhaustedError, FraudBlockedError, InsufficientStockError
from commerce.fraud import get_fraud_scorer
from commerce.fraud.port import FraudAction
from commerce.gateway import get_gateway
from commerce.order.lifecycle import CreateOrder, OrderLifecycle
from commerce.order.order import CancellationActor, NoteKind, OrderTotals
from commerce.reservation.engine import ReservationEngine
from commerce.reservation.reservation import normalize_lines

logger = structlog.get_logger(__name__)

CURRENCY = "USD"
OUT_OF_STOCK_REASON = "out_of_stock"
RESERVATION_FAILED_REASON = "reservation_failed"
PAYMENT_INTENT_FAILED_REASON = "payment_intent_failed"


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    reservation_id: str
    payment_intent_id: str
    total: float
    expires_at: datetime
    needs_review: bool = False


def _validated_items(items) -> list[dict]:
    lines = normalize_lines(items)
    validated = []
    for line, raw in zip(lines, items, strict=True):
        price = raw.get("unit_price") if isinstance(raw, dict) else None
        if price is None or price < 0:
            raise ValidationError({"items": [f"Unit price for {line.unit_id} must be zero or more"]})
        validated.append({"unit_id": line.unit_id, "quantity": line.quantity, "unit_price": float(price)})
    return validated


class Checkout:
    def place_order(
        self,
        items,
        customer_id=None,
        tax=0.0,
        shipping=0.0,
        discount=0.0,
        order_id=None,
    ) -> CheckoutResult:
        """Place an order for ``items`` (dicts of unit_id, quantity, unit_price)."""
        items = _validated_items(items)
        order_id = str(order_id or uuid4())
        subtotal = sum(item["unit_price"] * item["quantity"] for item in items)
        total = OrderTotals.compute(subtotal, tax=tax, shipping=shipping, discount=discount).total

        assessment = get_fraud_scorer().assess(order_id, customer_id, total)
        if assessment.action == FraudAction.BLOCK:
            logger.warning(
                "Checkout blocked by fraud screening",
                order_id=order_id,
                customer_id=customer_id,
                score=assessment.score,
                reasons=list(assessment.reasons),
            )
            raise FraudBlockedError(assessment.score)

        current_domain.process(
            CreateOrder(
                order_id=order_id,
                customer_id=customer_id,
                items=json.dumps(items),
                tax=tax,
                shipping=shipping,
                discount=discount,
            ),
            asynchronous=False,
        )

        lifecycle = OrderLifecycle()
        try:
            reservation = ReservationEngine().reserve(order_id, items)
        except (ValidationError, ConcurrencyExhaustedError) as exc:
            logger.info("Checkout could not reserve stock", order_id=order_id, error=str(exc))
            reason = OUT_OF_STOCK_REASON if isinstance(exc, InsufficientStockError) else RESERVATION_FAILED_REASON
            lifecycle.cancel(order_id, reason, CancellationActor.SYSTEM)
            raise

        intent = get_gateway().create_payment_intent(
            order_id=order_id,
            amount=total,
            currency=CURRENCY,
            idempotency_key=f"checkout-{order_id}",
        )
        if not intent.success:
            logger.warning("Payment intent failed", order_id=order_id, reason=intent.failure_reason)
            lifecycle.cancel(order_id, PAYMENT_INTENT_FAILED_REASON, CancellationActor.SYSTEM)
            raise ValidationError({"payment": [intent.failure_reason or "Payment could not be started"]})

        lifecycle.record_payment_intent(order_id, reservation.id, intent.payment_intent_id)

        needs_review = assessment.action == FraudAction.REVIEW
        if needs_review:
            reasons = ", ".join(assessment.reasons) or "no reasons given"
            lifecycle.flag_for_review(
                order_id,
                f"Fraud screening recommended review (score {assessment.score}): {reasons}",
                kind=NoteKind.SYSTEM,
            )

        logger.info(
            "Checkout complete",
            order_id=order_id,
            reservation_id=str(reservation.id),
            payment_intent_id=intent.payment_intent_id,
            total=total,
            needs_review=needs_review,
        )
        return CheckoutResult(
            order_id=order_id,
            reservation_id=str(reservation.id),
            payment_intent_id=intent.payment_intent_id,
            total=total,
            expires_at=reservation.expires_at,
            needs_review=needs_review,
        )
