"""Tracking reconciliation: fold carrier tracking into order status.

Carrier updates arrive by webhook and by periodic polling, possibly out of
order and repeated. Each update is applied by rank, never by arrival:

- ``in_transit`` (rank 1) moves a PROCESSING order to SHIPPED;
- ``delivered`` (rank 2) moves the order to DELIVERED, shipping it first if
  it was still PROCESSING;
- an update whose rank is not ahead of the recorded progress is discarded;
- ``exception`` leaves the order status alone, but when it is newer than the
  last update and the order is not delivered it adds an exception note and
  flags the order for review.

The tracking state and the order change in the same unit of work under the
order's row locks, so concurrent pollers and webhooks cannot interleave.
"""

from dataclasses import dataclass, field
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.carrier import get_carrier
from commerce.carrier.port import CarrierError
from commerce.domain import commerce
from commerce.errors import ConcurrencyExhaustedError
from commerce.order.lifecycle import order_lock_keys, transition_order
from commerce.order.order import NoteKind, Order, OrderStatus
from commerce.tracking.normalization import (
    STATUS_RANK,
    TrackingStatus,
    at_risk_since,
    classify_exception,
    normalize_status,
)
from commerce.tracking.tracking import ShippingTrackingState
from commerce.utils.clock import as_utc, utcnow
from commerce.utils.concurrency import run_exclusive
from commerce.utils.settings import at_risk_after

logger = structlog.get_logger(__name__)

_TRACKABLE = {OrderStatus.PROCESSING, OrderStatus.SHIPPED}
_CLOSED = {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}


class TrackingOutcome(Enum):
    ADVANCED = "advanced"
    RECORDED = "recorded"
    EXCEPTION = "exception"
    STALE = "stale"
    IGNORED = "ignored"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@commerce.command(part_of="ShippingTrackingState")
class RegisterShipment:
    order_id = Identifier(required=True)
    carrier = String(required=True, max_length=50)
    tracking_number = String(required=True, max_length=100)


@commerce.command(part_of="ShippingTrackingState")
class IngestTrackingUpdate:
    order_id = Identifier(required=True)
    raw_status = String(required=True, max_length=100)
    event_at = DateTime(required=True)
    description = Text()


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------
def _advance_order(order: Order, status: TrackingStatus) -> bool:
    current = order.order_status
    if current not in _TRACKABLE:
        logger.warning(
            "Tracking progress for an order that cannot move",
            order_id=str(order.id),
            order_status=order.status,
            tracking_status=status.value,
        )
        return False

    if status == TrackingStatus.IN_TRANSIT:
        if current == OrderStatus.PROCESSING:
            transition_order(order, OrderStatus.SHIPPED)
            return True
        return False

    if current == OrderStatus.PROCESSING:
        transition_order(order, OrderStatus.SHIPPED)
    transition_order(order, OrderStatus.DELIVERED)
    return True


def stop_if_closed(state: ShippingTrackingState, order: Order) -> bool:
    """Stop polling a shipment whose order was closed by some other path (refund, cancellation)."""
    if state.active and order.order_status in _CLOSED:
        state.stop(order.status.lower())
        return True
    return False


def apply_tracking_update(state: ShippingTrackingState, order: Order, raw_status, event_at, description=None):
    """Apply one carrier update inside the caller's unit of work. Caller persists both."""
    status = normalize_status(raw_status)
    if status is None:
        logger.warning("Unknown carrier status ignored", order_id=str(order.id), raw_status=raw_status)
        return TrackingOutcome.IGNORED

    if status == TrackingStatus.EXCEPTION:
        if order.order_status == OrderStatus.DELIVERED or not state.is_newer(event_at):
            logger.info(
                "Stale shipping exception discarded",
                order_id=str(order.id),
                raw_status=raw_status,
                event_at=str(event_at),
            )
            return TrackingOutcome.STALE

        exception = classify_exception(raw_status, description)
        state.record_exception(raw_status, exception, event_at)
        order.flag_for_review(exception.as_note(), kind=NoteKind.EXCEPTION)
        logger.warning(
            "Shipping exception recorded",
            order_id=str(order.id),
            exception_type=exception.type.value,
            requires_action=exception.requires_action,
        )
        return TrackingOutcome.EXCEPTION

    if not state.record_progress(raw_status, status, event_at):
        logger.info(
            "Out-of-order tracking update discarded",
            order_id=str(order.id),
            raw_status=raw_status,
            rank=STATUS_RANK[status],
            progress=state.progress,
        )
        return TrackingOutcome.STALE

    advanced = _advance_order(order, status)
    if status == TrackingStatus.DELIVERED:
        state.stop("delivered")
    else:
        stop_if_closed(state, order)
    return TrackingOutcome.ADVANCED if advanced else TrackingOutcome.RECORDED


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@commerce.command_handler(part_of=ShippingTrackingState)
class TrackingHandler:
    @handle(RegisterShipment)
    def register_shipment(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        if order.order_status not in _TRACKABLE:
            raise ValidationError({"order_id": [f"Cannot track a shipment for an order in {order.status} state"]})

        repo = current_domain.repository_for(ShippingTrackingState)
        existing = find_tracking_state(command.order_id)
        if existing is not None:
            if existing.tracking_number == command.tracking_number:
                return existing
            raise ValidationError({"order_id": [f"Order {command.order_id} already has a tracked shipment"]})

        state = ShippingTrackingState.start(
            order_id=command.order_id,
            carrier=command.carrier,
            tracking_number=command.tracking_number,
        )
        repo.add(state)
        logger.info(
            "Shipment registered",
            order_id=str(command.order_id),
            carrier=command.carrier,
            tracking_number=command.tracking_number,
        )
        return state

    @handle(IngestTrackingUpdate)
    def ingest_update(self, command):
        states = current_domain.repository_for(ShippingTrackingState)
        orders = current_domain.repository_for(Order)
        state = states.get(command.order_id)
        order = orders.get(command.order_id)

        outcome = apply_tracking_update(
            state,
            order,
            command.raw_status,
            as_utc(command.event_at),
            command.description,
        )
        if outcome not in (TrackingOutcome.IGNORED, TrackingOutcome.STALE):
            states.add(state)
            orders.add(order)
        elif stop_if_closed(state, order):
            states.add(state)
        return outcome


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def find_tracking_state(order_id) -> ShippingTrackingState | None:
    try:
        return current_domain.repository_for(ShippingTrackingState).get(order_id)
    except ObjectNotFoundError:
        return None


def find_by_tracking_number(tracking_number) -> ShippingTrackingState | None:
    states = (
        current_domain.repository_for(ShippingTrackingState)
        ._dao.query.filter(tracking_number=tracking_number)
        .all()
        .items
    )
    return states[0] if states else None


def active_shipments() -> list[ShippingTrackingState]:
    return current_domain.repository_for(ShippingTrackingState)._dao.query.filter(active=True).all().items


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------
class TrackingReconciler:
    def register_shipment(self, order_id, carrier, tracking_number) -> ShippingTrackingState:
        return run_exclusive(
            "register_shipment",
            lambda: [*order_lock_keys(order_id), f"tracking:{order_id}"],
            RegisterShipment(order_id=str(order_id), carrier=carrier, tracking_number=tracking_number),
        )

    def ingest(self, order_id, raw_status, event_at=None, description=None) -> TrackingOutcome:
        return run_exclusive(
            "ingest_tracking_update",
            lambda: [*order_lock_keys(order_id), f"tracking:{order_id}"],
            IngestTrackingUpdate(
                order_id=str(order_id),
                raw_status=raw_status,
                event_at=event_at or utcnow(),
                description=description,
            ),
        )

    def get(self, order_id) -> ShippingTrackingState:
        return current_domain.repository_for(ShippingTrackingState).get(order_id)


@dataclass
class ReconciliationSummary:
    checked: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)
    failed: int = 0

    def count(self, outcome: TrackingOutcome):
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1


def _last_description(info) -> str | None:
    if not info.events:
        return None
    last = info.events[-1]
    return last.get("description") or last.get("message")


def reconcile_tracking(now=None) -> ReconciliationSummary:
    """Poll the carrier for every active shipment and ingest what it reports.

    A shipment the carrier cannot answer for is skipped and picked up again on
    the next run.
    """
    now = as_utc(now) or utcnow()
    carrier = get_carrier()
    reconciler = TrackingReconciler()
    summary = ReconciliationSummary()

    for state in active_shipments():
        summary.checked += 1
        try:
            info = carrier.get_tracking(state.tracking_number)
        except CarrierError as exc:
            summary.failed += 1
            logger.warning(
                "Carrier lookup failed, will retry next run",
                order_id=str(state.order_id),
                tracking_number=state.tracking_number,
                error=str(exc),
            )
            continue

        event_at = as_utc(info.last_update) or now
        try:
            summary.count(reconciler.ingest(state.order_id, info.status, event_at, _last_description(info)))

            risky_from = at_risk_since(normalize_status(info.status), info.last_update, at_risk_after())
            if risky_from is not None and risky_from <= now:
                summary.count(
                    reconciler.ingest(
                        state.order_id,
                        "at_risk",
                        risky_from,
                        f"No tracking updates since {event_at.isoformat()}",
                    )
                )
        except ConcurrencyExhaustedError as exc:
            summary.failed += 1
            logger.warning("Tracking update deferred", order_id=str(state.order_id), error=str(exc))

    logger.info(
        "Tracking reconciliation complete",
        checked=summary.checked,
        failed=summary.failed,
        outcomes=summary.outcomes,
    )
    return summary
