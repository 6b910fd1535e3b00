"""Order lifecycle: create orders and move them along the fulfillment path.

``transition_order`` applies one forward transition inside the caller's unit
of work together with its stock side effect: PROCESSING needs a confirmed
reservation and SHIPPED finalizes the reserved units as sold. Cancellation
and refund live in their own modules because they compensate.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.order.cancellation import CancelOrder
from commerce.order.order import NoteKind, Order, OrderStatus
from commerce.order.refund import RefundOrder, request_gateway_refund
from commerce.reservation.engine import commit_reservation, current_reservation
from commerce.utils.concurrency import order_key, run_exclusive, unit_key

logger = structlog.get_logger(__name__)


@commerce.command(part_of="Order")
class CreateOrder:
    order_id = Identifier()  # Optional; generated when omitted
    customer_id = Identifier()
    items = Text(required=True)  # JSON: list of {unit_id, quantity, unit_price}
    tax = Float(default=0.0, min_value=0.0)
    shipping = Float(default=0.0, min_value=0.0)
    discount = Float(default=0.0, min_value=0.0)


@commerce.command(part_of="Order")
class RecordPaymentIntent:
    order_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    payment_intent_id = String(required=True, max_length=255)


@commerce.command(part_of="Order")
class AdvanceOrder:
    """Move an order forward to PROCESSING, SHIPPED or DELIVERED."""

    order_id = Identifier(required=True)
    status = String(required=True, choices=OrderStatus)


@commerce.command(part_of="Order")
class FlagOrderForReview:
    order_id = Identifier(required=True)
    reason = Text(required=True)
    kind = String(choices=NoteKind, default=NoteKind.ADMIN.value)


_FORWARD_STATUSES = {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}


def transition_order(order: Order, target: OrderStatus):
    """Apply a forward transition and its stock side effect. Caller persists the order."""
    if target not in _FORWARD_STATUSES:
        raise ValidationError({"status": [f"{target.value} is reached through cancellation or refund"]})

    reservation = current_reservation(order.id)
    if target == OrderStatus.PROCESSING:
        order.start_processing(reservation)
    elif target == OrderStatus.SHIPPED:
        order.mark_shipped()
        if reservation is not None and reservation.is_confirmed and reservation.owns_stock:
            commit_reservation(reservation)
    else:
        order.mark_delivered()

    logger.info("Order status changed", order_id=str(order.id), status=order.status)


def _order_exists(order_id) -> bool:
    try:
        current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        return False
    return True


@commerce.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(CreateOrder)
    def create_order(self, command):
        if command.order_id and _order_exists(command.order_id):
            raise ValidationError({"order_id": [f"Order {command.order_id} already exists"]})

        order = Order.place(
            items_data=json.loads(command.items),
            tax=command.tax or 0.0,
            shipping=command.shipping or 0.0,
            discount=command.discount or 0.0,
            customer_id=command.customer_id,
            order_id=command.order_id,
        )
        current_domain.repository_for(Order).add(order)
        logger.info("Order placed", order_id=str(order.id), total=order.totals.total)
        return str(order.id)

    @handle(RecordPaymentIntent)
    def record_payment_intent(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_payment_intent(command.reservation_id, command.payment_intent_id)
        repo.add(order)

    @handle(AdvanceOrder)
    def advance_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        transition_order(order, OrderStatus(command.status))
        repo.add(order)
        return order

    @handle(FlagOrderForReview)
    def flag_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.flag_for_review(command.reason, kind=NoteKind(command.kind or NoteKind.ADMIN.value))
        repo.add(order)


def order_lock_keys(order_id) -> list[str]:
    """The order row plus every unit its reservation touches."""
    keys = [order_key(order_id)]
    reservation = current_reservation(order_id)
    if reservation is not None:
        keys.extend(unit_key(unit_id) for unit_id in reservation.unit_ids)
    return keys


class OrderLifecycle:
    """Serialized order transitions. Every path takes the order's row locks."""

    def advance(self, order_id, status: OrderStatus) -> Order:
        return run_exclusive(
            f"advance_to_{status.value.lower()}",
            lambda: order_lock_keys(order_id),
            AdvanceOrder(order_id=str(order_id), status=status.value),
        )

    def ship(self, order_id) -> Order:
        return self.advance(order_id, OrderStatus.SHIPPED)

    def deliver(self, order_id) -> Order:
        return self.advance(order_id, OrderStatus.DELIVERED)

    def cancel(self, order_id, reason, cancelled_by, only_if_pending=False) -> Order:
        return run_exclusive(
            "cancel",
            lambda: order_lock_keys(order_id),
            CancelOrder(
                order_id=str(order_id),
                reason=reason,
                cancelled_by=cancelled_by.value,
                only_if_pending=only_if_pending,
            ),
        )

    def refund(self, order_id, reason) -> Order:
        refund_id = request_gateway_refund(order_id, reason)
        return run_exclusive(
            "refund",
            lambda: order_lock_keys(order_id),
            RefundOrder(order_id=str(order_id), reason=reason, refund_id=refund_id),
        )

    def record_payment_intent(self, order_id, reservation_id, payment_intent_id):
        run_exclusive(
            "record_payment_intent",
            [order_key(order_id)],
            RecordPaymentIntent(
                order_id=str(order_id),
                reservation_id=str(reservation_id),
                payment_intent_id=payment_intent_id,
            ),
        )

    def flag_for_review(self, order_id, reason, kind=NoteKind.ADMIN):
        run_exclusive(
            "flag_for_review",
            [order_key(order_id)],
            FlagOrderForReview(order_id=str(order_id), reason=reason, kind=kind.value),
        )

    def get(self, order_id) -> Order:
        return current_domain.repository_for(Order).get(order_id)
