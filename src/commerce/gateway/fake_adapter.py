"""Configurable fake payment gateway for development and testing.

Simulates the processor without external calls. It can be switched to
decline at runtime and records every call, so tests can assert that no
payment intent was created for an order that failed to reserve stock.
"""

from uuid import uuid4

from commerce.gateway.port import PaymentGateway, PaymentIntentResult, RefundResult

WEBHOOK_TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self.refunds: dict[str, RefundResult] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def calls_for(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def create_payment_intent(
        self,
        order_id: str,
        amount: float,
        currency: str,
        idempotency_key: str,
    ) -> PaymentIntentResult:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "order_id": order_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )

        if self.should_succeed:
            return PaymentIntentResult(
                success=True,
                payment_intent_id=f"fake_pi_{uuid4().hex[:12]}",
                gateway_status="requires_confirmation",
            )
        return PaymentIntentResult(
            success=False,
            gateway_status="failed",
            failure_reason=self.failure_reason,
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount: float,
        reason: str,
        idempotency_key: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "payment_intent_id": payment_intent_id,
                "amount": amount,
                "reason": reason,
                "idempotency_key": idempotency_key,
            }
        )

        # Only issued refunds are remembered; a declined request may be retried
        if idempotency_key in self.refunds:
            return self.refunds[idempotency_key]
        if not self.should_succeed:
            return RefundResult(success=False, failure_reason=self.failure_reason)

        result = RefundResult(
            success=True,
            gateway_refund_id=f"fake_ref_{uuid4().hex[:12]}",
            gateway_status="succeeded",
        )
        self.refunds[idempotency_key] = result
        return result

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == WEBHOOK_TEST_SIGNATURE
