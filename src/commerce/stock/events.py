"""Domain events for the StockRecord aggregate.

Every event carries the counters as they stand after the change so the
movement log can be built without replaying history.
"""

from protean.fields import DateTime, Identifier, Integer, String

from commerce.domain import commerce


@commerce.event(part_of="StockRecord")
class StockRegistered:
    __version__ = 1

    unit_id = Identifier(required=True)
    total_quantity = Integer(required=True)
    registered_at = DateTime(required=True)


@commerce.event(part_of="StockRecord")
class StockHeld:
    """Quantity moved from available to reserved for a reservation."""

    __version__ = 1

    unit_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    quantity = Integer(required=True)
    total_quantity = Integer(required=True)
    reserved_quantity = Integer(required=True)
    held_at = DateTime(required=True)


@commerce.event(part_of="StockRecord")
class StockReleased:
    """Reserved quantity returned to available (release, expiry, restock)."""

    __version__ = 1

    unit_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    quantity = Integer(required=True)
    reason = String(max_length=100)
    total_quantity = Integer(required=True)
    reserved_quantity = Integer(required=True)
    released_at = DateTime(required=True)


@commerce.event(part_of="StockRecord")
class StockCommitted:
    """Sale finalized: the reserved quantity leaves the warehouse."""

    __version__ = 1

    unit_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    quantity = Integer(required=True)
    total_quantity = Integer(required=True)
    reserved_quantity = Integer(required=True)
    committed_at = DateTime(required=True)


@commerce.event(part_of="StockRecord")
class StockReceived:
    __version__ = 1

    unit_id = Identifier(required=True)
    quantity = Integer(required=True)
    reference = String(max_length=255)
    total_quantity = Integer(required=True)
    reserved_quantity = Integer(required=True)
    received_at = DateTime(required=True)


@commerce.event(part_of="StockRecord")
class StockAdjusted:
    __version__ = 1

    unit_id = Identifier(required=True)
    previous_total = Integer(required=True)
    total_quantity = Integer(required=True)
    reserved_quantity = Integer(required=True)
    reason = String(required=True, max_length=500)
    adjusted_at = DateTime(required=True)


@commerce.event(part_of="StockRecord")
class LowStockDetected:
    __version__ = 1

    unit_id = Identifier(required=True)
    available_quantity = Integer(required=True)
    threshold = Integer(required=True)
    detected_at = DateTime(required=True)
