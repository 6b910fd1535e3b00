"""Stock movement: append-only audit trail of every change to a unit's counters."""

import uuid

from protean.core.projector import on
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.reservation.engine import RESTOCK_REASON
from commerce.stock.events import (
    StockAdjusted,
    StockCommitted,
    StockHeld,
    StockReceived,
    StockRegistered,
    StockReleased,
)
from commerce.stock.stock import StockRecord


@commerce.projection
class StockMovement:
    entry_id = Identifier(identifier=True, required=True)
    unit_id = Identifier(required=True)
    movement = String(required=True, max_length=50)
    reservation_id = Identifier()
    quantity_change = Integer(default=0)
    reserved_change = Integer(default=0)
    total_quantity = Integer(default=0)
    reserved_quantity = Integer(default=0)
    available_quantity = Integer(default=0)
    note = String(max_length=500)
    occurred_at = DateTime(required=True)


def _record(event, movement, occurred_at, quantity_change=0, reserved_change=0, reservation_id=None, note=None):
    current_domain.repository_for(StockMovement).add(
        StockMovement(
            entry_id=str(uuid.uuid4()),
            unit_id=event.unit_id,
            movement=movement,
            reservation_id=reservation_id,
            quantity_change=quantity_change,
            reserved_change=reserved_change,
            total_quantity=event.total_quantity,
            reserved_quantity=getattr(event, "reserved_quantity", 0) or 0,
            available_quantity=event.total_quantity - (getattr(event, "reserved_quantity", 0) or 0),
            note=note,
            occurred_at=occurred_at,
        )
    )


@commerce.projector(projector_for=StockMovement, aggregates=[StockRecord])
class StockMovementProjector:
    @on(StockRegistered)
    def on_stock_registered(self, event):
        _record(event, "registered", event.registered_at, quantity_change=event.total_quantity)

    @on(StockHeld)
    def on_stock_held(self, event):
        _record(
            event,
            "held",
            event.held_at,
            reserved_change=event.quantity,
            reservation_id=event.reservation_id,
        )

    @on(StockReleased)
    def on_stock_released(self, event):
        _record(
            event,
            "restocked" if event.reason == RESTOCK_REASON else "released",
            event.released_at,
            reserved_change=-event.quantity,
            reservation_id=event.reservation_id,
            note=event.reason,
        )

    @on(StockCommitted)
    def on_stock_committed(self, event):
        _record(
            event,
            "committed",
            event.committed_at,
            quantity_change=-event.quantity,
            reserved_change=-event.quantity,
            reservation_id=event.reservation_id,
        )

    @on(StockReceived)
    def on_stock_received(self, event):
        _record(event, "received", event.received_at, quantity_change=event.quantity, note=event.reference)

    @on(StockAdjusted)
    def on_stock_adjusted(self, event):
        _record(
            event,
            "adjusted",
            event.adjusted_at,
            quantity_change=event.total_quantity - event.previous_total,
            note=event.reason,
        )


def movements_for(unit_id) -> list[StockMovement]:
    movements = current_domain.repository_for(StockMovement)._dao.query.filter(unit_id=unit_id).all().items
    return sorted(movements, key=lambda m: m.occurred_at)
