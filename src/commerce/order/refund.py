"""Order refund: compensating action for a completed payment.

The refund is requested from the gateway once, before the order's locks are
taken, so contention retries of the ``RefundOrder`` command never move money
again. The request carries an idempotency key derived from the order, which
makes a repeated refund of the same order a replay on the gateway's side.
The order changes only if the gateway accepted the refund. Units that have
not shipped yet go back to available stock.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.gateway import get_gateway
from commerce.order.order import Order
from commerce.reservation.engine import current_reservation, restock_reservation

logger = structlog.get_logger(__name__)


def refund_idempotency_key(order_id) -> str:
    return f"refund-{order_id}"


def request_gateway_refund(order_id, reason) -> str:
    """Refund the order's payment on the gateway and return the refund id.

    Raises ``IllegalTransitionError`` when the order cannot be refunded and
    ``ValidationError`` when the gateway refuses.
    """
    order = current_domain.repository_for(Order).get(order_id)
    order.assert_refundable()

    result = get_gateway().create_refund(
        payment_intent_id=order.payment_intent_id,
        amount=order.totals.total,
        reason=reason,
        idempotency_key=refund_idempotency_key(order.id),
    )
    if not result.success:
        logger.warning(
            "Gateway refused refund",
            order_id=str(order.id),
            failure_reason=result.failure_reason,
        )
        raise ValidationError({"payment": [f"Refund failed: {result.failure_reason}"]})
    return result.gateway_refund_id


@commerce.command(part_of="Order")
class RefundOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    refund_id = String(max_length=255)


@commerce.command_handler(part_of=Order)
class RefundOrderHandler:
    @handle(RefundOrder)
    def refund_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.refund(command.reason, refund_id=command.refund_id)

        reservation = current_reservation(order.id)
        if reservation is not None and reservation.owns_stock and reservation.is_confirmed:
            restock_reservation(reservation)

        repo.add(order)
        logger.info("Order refunded", order_id=str(order.id), refund_id=command.refund_id)
        return order
