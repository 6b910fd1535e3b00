"""Domain events for the Order aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, String, Text

from commerce.domain import commerce


@commerce.event(part_of="Order")
class OrderPlaced:
    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier()
    items = Text(required=True)  # JSON: list of {unit_id, quantity, unit_price}
    total = Float(required=True)
    placed_at = DateTime(required=True)


@commerce.event(part_of="Order")
class PaymentIntentRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    payment_intent_id = String(required=True, max_length=255)
    recorded_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderProcessingStarted:
    """Payment completed and the reservation is confirmed."""

    __version__ = 1

    order_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    started_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    shipped_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    delivered_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(max_length=500)
    cancelled_by = String(required=True, max_length=50)
    payment_status = String(required=True, max_length=50)
    cancelled_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderRefunded:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(max_length=500)
    refund_id = String(max_length=255)
    amount = Float(required=True)
    refunded_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderFlaggedForReview:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = Text(required=True)
    needs_review = Boolean(default=True)
    flagged_at = DateTime(required=True)
