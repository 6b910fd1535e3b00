"""Reservation engine: reserve, confirm and release stock for an order.

Each public operation of ``ReservationEngine`` dispatches one command while
holding the locks of every unit it touches (plus the order, for reserve), so
per-unit changes are linearizable and a multi-line reserve is all-or-nothing.

The ``*_reservation`` functions are the same transitions without the
locking; other handlers (payment gate, order lifecycle) call them to fold a
reservation change into their own unit of work.
"""

from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import DuplicateReservationError
from commerce.reservation.reservation import (
    Reservation,
    ReservationStatus,
    lines_from_json,
    lines_to_json,
    normalize_lines,
)
from commerce.stock.ledger import StockLedger
from commerce.utils.concurrency import order_key, run_exclusive, unit_key
from commerce.utils.settings import hold_duration

logger = structlog.get_logger(__name__)

_BLOCKING_STATUSES = (ReservationStatus.HELD.value, ReservationStatus.CONFIRMED.value)

RESTOCK_REASON = "restock"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@commerce.command(part_of="Reservation")
class ReserveStock:
    """Hold stock for every line of an order, or for none of them."""

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    lines = Text(required=True)  # JSON: list of {unit_id, quantity}
    expires_at = DateTime()  # Optional; defaults to now + configured hold


@commerce.command(part_of="Reservation")
class ConfirmReservation:
    reservation_id = Identifier(required=True)


@commerce.command(part_of="Reservation")
class ReleaseReservation:
    reservation_id = Identifier(required=True)
    reason = String(required=True, max_length=100)


@commerce.command(part_of="Reservation")
class CommitReservation:
    """Finalize the sale of a confirmed reservation."""

    reservation_id = Identifier(required=True)


@commerce.command(part_of="Reservation")
class RestockReservation:
    """Return a confirmed, unshipped reservation's units to available stock."""

    reservation_id = Identifier(required=True)


# ---------------------------------------------------------------------------
# Transitions inside the caller's unit of work
# ---------------------------------------------------------------------------
def reservations_for_order(order_id) -> list[Reservation]:
    reservations = current_domain.repository_for(Reservation)._dao.query.filter(order_id=order_id).all().items
    return sorted(reservations, key=lambda r: r.created_at)


def current_reservation(order_id) -> Reservation | None:
    """The order's blocking reservation if any, else its latest one."""
    reservations = reservations_for_order(order_id)
    for reservation in reversed(reservations):
        if reservation.status in _BLOCKING_STATUSES:
            return reservation
    return reservations[-1] if reservations else None


def hold_reservation(reservation_id, order_id, lines, expires_at=None) -> Reservation:
    existing = [r for r in reservations_for_order(order_id) if r.status in _BLOCKING_STATUSES]
    if existing:
        reservation = existing[-1]
        if reservation.is_held and reservation.matches(lines):
            logger.info(
                "Reservation already held for order",
                order_id=str(order_id),
                reservation_id=str(reservation.id),
            )
            return reservation
        raise DuplicateReservationError(str(order_id), str(reservation.id))

    StockLedger().hold(reservation_id, lines)

    reservation = Reservation.hold(
        reservation_id=reservation_id,
        order_id=order_id,
        lines=lines,
        expires_at=expires_at or datetime.now(UTC) + hold_duration(),
    )
    current_domain.repository_for(Reservation).add(reservation)

    logger.info(
        "Stock reserved",
        reservation_id=str(reservation.id),
        order_id=str(order_id),
        lines=[line.as_dict() for line in lines],
        expires_at=str(reservation.expires_at),
    )
    return reservation


def confirm_reservation(reservation: Reservation) -> bool:
    changed = reservation.confirm()
    if changed:
        current_domain.repository_for(Reservation).add(reservation)
        logger.info("Reservation confirmed", reservation_id=str(reservation.id))
    return changed


def release_reservation(reservation: Reservation, reason) -> bool:
    changed = reservation.release(reason)
    if changed:
        StockLedger().release(reservation.id, reservation.requested_lines, reason=reason)
        current_domain.repository_for(Reservation).add(reservation)
        logger.info("Reservation released", reservation_id=str(reservation.id), reason=reason)
    return changed


def commit_reservation(reservation: Reservation) -> bool:
    changed = reservation.mark_committed()
    if changed:
        StockLedger().commit(reservation.id, reservation.requested_lines)
        current_domain.repository_for(Reservation).add(reservation)
        logger.info("Reservation committed", reservation_id=str(reservation.id))
    return changed


def restock_reservation(reservation: Reservation) -> bool:
    changed = reservation.mark_restocked()
    if changed:
        StockLedger().release(reservation.id, reservation.requested_lines, reason=RESTOCK_REASON)
        current_domain.repository_for(Reservation).add(reservation)
        logger.info("Reservation restocked", reservation_id=str(reservation.id))
    return changed


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@commerce.command_handler(part_of=Reservation)
class ReservationHandler:
    @handle(ReserveStock)
    def reserve(self, command):
        return hold_reservation(
            reservation_id=command.reservation_id,
            order_id=command.order_id,
            lines=lines_from_json(command.lines),
            expires_at=command.expires_at,
        )

    @handle(ConfirmReservation)
    def confirm(self, command):
        reservation = current_domain.repository_for(Reservation).get(command.reservation_id)
        confirm_reservation(reservation)
        return reservation

    @handle(ReleaseReservation)
    def release(self, command):
        reservation = current_domain.repository_for(Reservation).get(command.reservation_id)
        release_reservation(reservation, command.reason)
        return reservation

    @handle(CommitReservation)
    def commit(self, command):
        reservation = current_domain.repository_for(Reservation).get(command.reservation_id)
        commit_reservation(reservation)
        return reservation

    @handle(RestockReservation)
    def restock(self, command):
        reservation = current_domain.repository_for(Reservation).get(command.reservation_id)
        restock_reservation(reservation)
        return reservation


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
class ReservationEngine:
    """Stock reservations for orders, serialized per unit."""

    def reserve(self, order_id, lines, expires_at=None) -> Reservation:
        lines = normalize_lines(lines)
        keys = [unit_key(line.unit_id) for line in lines] + [order_key(order_id)]
        return run_exclusive(
            "reserve",
            keys,
            ReserveStock(
                reservation_id=str(uuid4()),
                order_id=str(order_id),
                lines=lines_to_json(lines),
                expires_at=expires_at,
            ),
        )

    def confirm(self, reservation_id) -> Reservation:
        return run_exclusive(
            "confirm",
            self._keys_for(reservation_id),
            ConfirmReservation(reservation_id=str(reservation_id)),
        )

    def release(self, reservation_id, reason) -> Reservation:
        return run_exclusive(
            "release",
            self._keys_for(reservation_id),
            ReleaseReservation(reservation_id=str(reservation_id), reason=reason),
        )

    def commit(self, reservation_id) -> Reservation:
        return run_exclusive(
            "commit",
            self._keys_for(reservation_id),
            CommitReservation(reservation_id=str(reservation_id)),
        )

    def restock(self, reservation_id) -> Reservation:
        return run_exclusive(
            "restock",
            self._keys_for(reservation_id),
            RestockReservation(reservation_id=str(reservation_id)),
        )

    def get(self, reservation_id) -> Reservation:
        return current_domain.repository_for(Reservation).get(reservation_id)

    def for_order(self, order_id) -> Reservation | None:
        return current_reservation(order_id)

    def available(self, unit_id) -> int:
        return StockLedger().available(unit_id)

    def _keys_for(self, reservation_id) -> list[str]:
        # Lines never change after the hold, so reading them unlocked is safe
        reservation = self.get(reservation_id)
        return [unit_key(unit_id) for unit_id in reservation.unit_ids] + [order_key(reservation.order_id)]
