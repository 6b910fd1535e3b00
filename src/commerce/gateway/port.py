"""Payment gateway port (abstract interface).

The contract this core needs from the payment processor: create a payment
intent for a reserved order, refund a completed payment, and authenticate
the processor's webhook notifications. Card handling stays on the
processor's side.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PaymentIntentResult:
    """Result of creating a payment intent."""

    success: bool
    payment_intent_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_payment_intent(
        self,
        order_id: str,
        amount: float,
        currency: str,
        idempotency_key: str,
    ) -> PaymentIntentResult:
        """Ask the processor to collect ``amount`` for an order."""
        ...

    @abstractmethod
    def create_refund(
        self,
        payment_intent_id: str,
        amount: float,
        reason: str,
        idempotency_key: str,
    ) -> RefundResult:
        """Refund a completed payment. A repeated ``idempotency_key`` replays the first result."""
        ...

    @abstractmethod
    def verify_webhook_signature(
        self,
        payload: str,
        signature: str,
    ) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
