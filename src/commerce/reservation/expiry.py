"""Reservation expiry sweeper: release holds that outlived their payment window.

Run periodically (see ``worker.py``) or through the maintenance endpoint.
Several sweepers may run at once: every step is idempotent, and a
reservation confirmed while the sweep was in flight makes ``release`` raise
``InvalidStateError``, which the sweeper treats as already resolved.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from commerce.errors import ConcurrencyExhaustedError, InvalidStateError
from commerce.order.lifecycle import OrderLifecycle
from commerce.order.order import CancellationActor, Order, OrderStatus
from commerce.reservation.engine import ReservationEngine, current_reservation
from commerce.reservation.reservation import EXPIRY_REASON, Reservation, ReservationStatus
from commerce.utils.clock import as_utc, utcnow
from commerce.utils.settings import hold_duration

logger = structlog.get_logger(__name__)

ORDER_EXPIRED_REASON = "reservation_expired"


def stale_reservations(as_of) -> list[Reservation]:
    held = (
        current_domain.repository_for(Reservation)
        ._dao.query.filter(status=ReservationStatus.HELD.value)
        .all()
        .items
    )
    return [reservation for reservation in held if as_utc(reservation.expires_at) < as_of]


def expire_stale_reservations(as_of=None) -> int:
    """Release every HELD reservation past its expiry and cancel its pending order.

    Returns the number of reservations this run expired.
    """
    as_of = as_utc(as_of) or utcnow()
    stale = stale_reservations(as_of)
    if not stale:
        logger.debug("No stale reservations found", as_of=as_of.isoformat())
        return 0

    engine = ReservationEngine()
    lifecycle = OrderLifecycle()
    expired_count = 0

    for reservation in stale:
        try:
            released = engine.release(reservation.id, EXPIRY_REASON)
        except InvalidStateError:
            logger.info(
                "Reservation resolved before it could expire",
                reservation_id=str(reservation.id),
                order_id=str(reservation.order_id),
            )
            continue
        except ConcurrencyExhaustedError as exc:
            logger.warning(
                "Could not expire reservation, will retry next run",
                reservation_id=str(reservation.id),
                error=str(exc),
            )
            continue

        if released.status == ReservationStatus.EXPIRED.value:
            expired_count += 1
            logger.info(
                "Released stale reservation",
                reservation_id=str(reservation.id),
                order_id=str(reservation.order_id),
                expired_at=str(reservation.expires_at),
            )

        _cancel_pending_order(lifecycle, reservation.order_id)

    logger.info("Stale reservation cleanup complete", expired_count=expired_count)
    return expired_count


def cancel_abandoned_orders(as_of=None) -> int:
    """Cancel PENDING orders older than the hold whose reservation is gone.

    Picks up orders left behind when a previous run released the hold but
    failed to cancel the order.
    """
    as_of = as_utc(as_of) or utcnow()
    cutoff = as_of - hold_duration()
    lifecycle = OrderLifecycle()
    cancelled = 0

    pending = current_domain.repository_for(Order)._dao.query.filter(status=OrderStatus.PENDING.value).all().items
    for order in pending:
        if as_utc(order.created_at) >= cutoff:
            continue
        reservation = current_reservation(order.id)
        if reservation is not None and not reservation.is_released:
            continue
        if _cancel_pending_order(lifecycle, order.id):
            cancelled += 1

    if cancelled:
        logger.info("Cancelled abandoned orders", cancelled_count=cancelled)
    return cancelled


def _cancel_pending_order(lifecycle: OrderLifecycle, order_id):
    try:
        order = lifecycle.get(order_id)
    except ObjectNotFoundError:
        logger.info("Expired reservation has no order", order_id=str(order_id))
        return False

    if order.order_status != OrderStatus.PENDING:
        return False

    try:
        order = lifecycle.cancel(
            order_id,
            ORDER_EXPIRED_REASON,
            CancellationActor.SYSTEM,
            only_if_pending=True,
        )
    except ConcurrencyExhaustedError as exc:
        logger.warning("Could not cancel expired order, will retry next run", order_id=str(order_id), error=str(exc))
        return False
    # The order may have moved on between the read above and the lock
    return order.order_status == OrderStatus.CANCELLED and order.cancellation_reason == ORDER_EXPIRED_REASON
