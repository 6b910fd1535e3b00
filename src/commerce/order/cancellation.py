"""Order cancellation: customer, admin and system paths converge here.

Whichever cancellation arrives first wins; later ones find the order
CANCELLED and do nothing. A held reservation is released. A confirmed but
unshipped reservation is restocked, since its payment is refunded out of
band.
"""

import structlog
from protean import handle
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.order.order import CancellationActor, Order, OrderStatus
from commerce.reservation.engine import current_reservation, release_reservation, restock_reservation

logger = structlog.get_logger(__name__)

ORDER_CANCELLED_REASON = "order_cancelled"


@commerce.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=500)
    cancelled_by = String(choices=CancellationActor, default=CancellationActor.CUSTOMER.value)
    only_if_pending = Boolean(default=False)  # No-op unless the order is still PENDING


def apply_cancellation(order: Order, reason, cancelled_by: CancellationActor, payment_failed=False) -> bool:
    """Cancel inside the caller's unit of work. Caller persists the order."""
    if not order.cancel(reason, cancelled_by=cancelled_by, payment_failed=payment_failed):
        logger.info("Order already cancelled", order_id=str(order.id))
        return False

    reservation = current_reservation(order.id)
    if reservation is not None:
        if reservation.is_held:
            release_reservation(reservation, ORDER_CANCELLED_REASON)
        elif reservation.owns_stock:
            restock_reservation(reservation)

    logger.info(
        "Order cancelled",
        order_id=str(order.id),
        reason=reason,
        cancelled_by=cancelled_by.value,
    )
    return True


@commerce.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if command.only_if_pending and order.order_status != OrderStatus.PENDING:
            logger.info("Order no longer pending, not cancelling", order_id=str(order.id), status=order.status)
            return order
        if apply_cancellation(order, command.reason, CancellationActor(command.cancelled_by)):
            repo.add(order)
        return order
