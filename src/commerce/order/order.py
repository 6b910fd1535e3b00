"""Order aggregate: status and payment status of one customer order.

State Machine:
    PENDING → PROCESSING → SHIPPED → DELIVERED
    PENDING | PROCESSING → CANCELLED
    PROCESSING | SHIPPED | DELIVERED → REFUNDED   (requires a completed payment)

Every status change goes through ``_assert_can_transition``; any edge not in
``_VALID_TRANSITIONS`` raises ``IllegalTransitionError`` before a field is
touched. PROCESSING additionally requires the order's reservation to be
CONFIRMED. Stock side effects of a transition (release, commit, restock) are
applied by ``commerce.order.lifecycle`` in the same unit of work.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from commerce.domain import commerce
from commerce.errors import IllegalTransitionError
from commerce.order.events import (
    OrderCancelled,
    OrderDelivered,
    OrderFlaggedForReview,
    OrderPlaced,
    OrderProcessingStarted,
    OrderRefunded,
    OrderShipped,
    PaymentIntentRecorded,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


class PaymentStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class CancellationActor(Enum):
    CUSTOMER = "Customer"
    SYSTEM = "System"
    ADMIN = "Admin"


class NoteKind(Enum):
    SYSTEM = "System"
    PAYMENT = "Payment"
    EXCEPTION = "Exception"
    ADMIN = "Admin"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # terminal
    OrderStatus.REFUNDED: set(),  # terminal
}

# Forward progress along the fulfillment path, used to order tracking updates
STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 3,
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@commerce.value_object(part_of="Order")
class OrderTotals:
    """Amounts locked at checkout. ``total = subtotal + tax + shipping - discount``."""

    subtotal = Float(default=0.0, min_value=0.0)
    tax = Float(default=0.0, min_value=0.0)
    shipping = Float(default=0.0, min_value=0.0)
    discount = Float(default=0.0, min_value=0.0)
    total = Float(default=0.0, min_value=0.0)

    @invariant.post
    def total_matches_components(self):
        expected = round(self.subtotal + self.tax + self.shipping - self.discount, 2)
        if abs(round(self.total, 2) - expected) > 0.005:
            raise ValidationError({"total": [f"Total {self.total} does not equal components ({expected})"]})

    @classmethod
    def compute(cls, subtotal, tax=0.0, shipping=0.0, discount=0.0):
        total = round(subtotal + tax + shipping - discount, 2)
        if total < 0:
            raise ValidationError({"discount": ["Discount cannot exceed subtotal plus tax and shipping"]})
        return cls(
            subtotal=round(subtotal, 2),
            tax=round(tax, 2),
            shipping=round(shipping, 2),
            discount=round(discount, 2),
            total=total,
        )


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@commerce.entity(part_of="Order")
class OrderItem:
    unit_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)


@commerce.entity(part_of="Order")
class OrderNote:
    """Free-text note on an order, e.g. a carrier exception awaiting review."""

    kind = String(choices=NoteKind, default=NoteKind.SYSTEM.value)
    message = Text(required=True)
    author = String(max_length=100, default="system")
    created_at = DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@commerce.aggregate
class Order:
    customer_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    reservation_id = Identifier()
    payment_intent_id = String(max_length=255)
    items = HasMany(OrderItem)
    totals = ValueObject(OrderTotals)
    notes = HasMany(OrderNote)
    needs_review = Boolean(default=False)
    cancellation_reason = String(max_length=500)
    cancelled_by = String(choices=CancellationActor)
    created_at = DateTime()
    updated_at = DateTime()
    processing_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(cls, items_data, tax=0.0, shipping=0.0, discount=0.0, customer_id=None, order_id=None):
        """Create a PENDING order from checkout data.

        Args:
            items_data: List of dicts with unit_id, quantity, unit_price.
            tax, shipping, discount: Order-level amounts added to the item subtotal.
            order_id: Caller-supplied identity; generated when omitted.
        """
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        subtotal = sum(item["unit_price"] * item["quantity"] for item in items_data)
        now = datetime.now(UTC)

        attributes = dict(
            customer_id=customer_id,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            totals=OrderTotals.compute(subtotal, tax=tax, shipping=shipping, discount=discount),
            created_at=now,
            updated_at=now,
        )
        if order_id is not None:
            attributes["id"] = order_id
        order = cls(**attributes)

        for item in items_data:
            order.add_items(
                OrderItem(
                    unit_id=item["unit_id"],
                    quantity=item["quantity"],
                    unit_price=item["unit_price"],
                )
            )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                customer_id=customer_id,
                items=json.dumps(items_data),
                total=order.totals.total,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def reservation_lines(self) -> list[dict]:
        return [{"unit_id": str(item.unit_id), "quantity": item.quantity} for item in self.items]

    def can_transition_to(self, target_status) -> bool:
        return target_status in _VALID_TRANSITIONS.get(self.order_status, set())

    def _assert_can_transition(self, target_status, reason=None):
        """Validate that the current state allows transition to target."""
        if not self.can_transition_to(target_status):
            raise IllegalTransitionError(self.order_status.value, target_status.value, reason)

    def _touch(self):
        now = datetime.now(UTC)
        self.updated_at = now
        return now

    def add_note(self, message, kind=NoteKind.SYSTEM, author="system"):
        self.add_notes(
            OrderNote(
                kind=kind.value,
                message=message,
                author=author,
                created_at=datetime.now(UTC),
            )
        )
        self._touch()

    def flag_for_review(self, reason, kind=NoteKind.SYSTEM):
        """Append a note and mark the order for manual review."""
        self.add_note(reason, kind=kind)
        self.needs_review = True
        self.raise_(
            OrderFlaggedForReview(
                order_id=str(self.id),
                reason=reason,
                flagged_at=self._touch(),
            )
        )

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def record_payment_intent(self, reservation_id, payment_intent_id):
        """A payment intent exists for the held reservation; payment is in flight."""
        if self.order_status != OrderStatus.PENDING:
            raise ValidationError({"status": [f"Cannot start payment for order in {self.status} state"]})

        self.reservation_id = reservation_id
        self.payment_intent_id = payment_intent_id
        self.payment_status = PaymentStatus.PROCESSING.value
        self.raise_(
            PaymentIntentRecorded(
                order_id=str(self.id),
                reservation_id=str(reservation_id),
                payment_intent_id=payment_intent_id,
                recorded_at=self._touch(),
            )
        )

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def start_processing(self, reservation):
        """PENDING → PROCESSING once payment completed and the reservation is confirmed."""
        self._assert_can_transition(OrderStatus.PROCESSING)
        if reservation is None or not reservation.is_confirmed:
            raise IllegalTransitionError(
                self.status,
                OrderStatus.PROCESSING.value,
                "reservation is not confirmed",
            )

        now = self._touch()
        self.status = OrderStatus.PROCESSING.value
        self.payment_status = PaymentStatus.COMPLETED.value
        self.reservation_id = reservation.id
        self.processing_at = now
        self.raise_(
            OrderProcessingStarted(
                order_id=str(self.id),
                reservation_id=str(reservation.id),
                started_at=now,
            )
        )

    def mark_shipped(self):
        self._assert_can_transition(OrderStatus.SHIPPED)
        now = self._touch()
        self.status = OrderStatus.SHIPPED.value
        self.shipped_at = now
        self.raise_(OrderShipped(order_id=str(self.id), shipped_at=now))

    def mark_delivered(self):
        self._assert_can_transition(OrderStatus.DELIVERED)
        now = self._touch()
        self.status = OrderStatus.DELIVERED.value
        self.delivered_at = now
        self.raise_(OrderDelivered(order_id=str(self.id), delivered_at=now))

    def cancel(self, reason, cancelled_by=CancellationActor.CUSTOMER, payment_failed=False) -> bool:
        """Cancel the order. Returns False if it was already cancelled."""
        if self.order_status == OrderStatus.CANCELLED:
            return False
        self._assert_can_transition(OrderStatus.CANCELLED)

        now = self._touch()
        self.status = OrderStatus.CANCELLED.value
        if payment_failed:
            self.payment_status = PaymentStatus.FAILED.value
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by.value
        self.cancelled_at = now
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                reason=reason,
                cancelled_by=cancelled_by.value,
                payment_status=self.payment_status,
                cancelled_at=now,
            )
        )
        return True

    def assert_refundable(self):
        self._assert_can_transition(OrderStatus.REFUNDED)
        if self.payment_status != PaymentStatus.COMPLETED.value:
            raise IllegalTransitionError(
                self.status,
                OrderStatus.REFUNDED.value,
                f"payment status is {self.payment_status}",
            )

    def refund(self, reason, refund_id=None):
        self.assert_refundable()

        now = self._touch()
        self.status = OrderStatus.REFUNDED.value
        self.payment_status = PaymentStatus.REFUNDED.value
        self.refunded_at = now
        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                reason=reason,
                refund_id=refund_id,
                amount=self.totals.total,
                refunded_at=now,
            )
        )
