"""Application tests for the reservation expiry sweeper."""

from datetime import timedelta

import pytest

from commerce.order.lifecycle import OrderLifecycle
from commerce.order.order import CancellationActor, OrderStatus
from commerce.payment.gate import PaymentConfirmationGate
from commerce.reservation.engine import ReservationEngine
from commerce.reservation.expiry import (
    ORDER_EXPIRED_REASON,
    cancel_abandoned_orders,
    expire_stale_reservations,
    _cancel_pending_order,
    stale_reservations,
)
from commerce.reservation.reservation import ReservationStatus
from commerce.stock.management import get_stock
from commerce.utils.clock import utcnow


@pytest.fixture()
def later():
    """A moment just past the default fifteen-minute hold."""
    return utcnow() + timedelta(minutes=16)


class TestExpireStaleReservations:
    def test_expired_hold_is_released_and_order_cancelled(self, place_order, later):
        placed = place_order(lines={"A": 5})
        assert get_stock("A").available_quantity == 5

        assert expire_stale_reservations(as_of=later) == 1

        reservation = ReservationEngine().get(placed.reservation_id)
        assert reservation.status == ReservationStatus.EXPIRED.value
        assert get_stock("A").available_quantity == 10

        order = OrderLifecycle().get("ord-001")
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason == ORDER_EXPIRED_REASON
        assert order.cancelled_by == CancellationActor.SYSTEM.value

    def test_unexpired_hold_is_left_alone(self, place_order):
        place_order(lines={"A": 5})
        assert expire_stale_reservations(as_of=utcnow() + timedelta(minutes=14)) == 0
        assert get_stock("A").reserved_quantity == 5

    def test_confirmed_reservation_is_not_expired(self, paid_order, later):
        paid_order(lines={"A": 5})

        assert stale_reservations(later) == []
        assert expire_stale_reservations(as_of=later) == 0
        assert get_stock("A").reserved_quantity == 5
        assert OrderLifecycle().get("ord-001").status == OrderStatus.PROCESSING.value

    def test_second_run_does_nothing(self, place_order, later):
        place_order(lines={"A": 5})

        assert expire_stale_reservations(as_of=later) == 1
        assert expire_stale_reservations(as_of=later) == 0
        assert get_stock("A").available_quantity == 10

    def test_only_stale_orders_are_swept(self, place_order, later):
        place_order(order_id="ord-old", lines={"A": 3})
        fresh = ReservationEngine().reserve("ord-new", [("B", 1)], expires_at=later + timedelta(minutes=30))

        assert expire_stale_reservations(as_of=later) == 1
        assert ReservationEngine().get(fresh.id).status == ReservationStatus.HELD.value
        assert get_stock("B").reserved_quantity == 1


class TestCancelAbandonedOrders:
    def test_pending_order_with_released_hold_is_cancelled(self, place_order, later):
        placed = place_order(lines={"A": 2})
        # A previous sweep released the hold but never reached the order
        ReservationEngine().release(placed.reservation_id, "expired")

        assert cancel_abandoned_orders(as_of=later) == 1
        order = OrderLifecycle().get("ord-001")
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason == ORDER_EXPIRED_REASON

    def test_recent_orders_are_kept(self, place_order):
        placed = place_order(lines={"A": 2})
        ReservationEngine().release(placed.reservation_id, "expired")

        assert cancel_abandoned_orders(as_of=utcnow()) == 0
        assert OrderLifecycle().get("ord-001").status == OrderStatus.PENDING.value

    def test_orders_with_a_live_hold_are_kept(self, place_order, later):
        place_order(lines={"A": 2})
        assert cancel_abandoned_orders(as_of=later) == 0
        assert OrderLifecycle().get("ord-001").status == OrderStatus.PENDING.value


class TestCancelPendingOrderRace:
    """The sweeper read the order while PENDING; it changed before the lock was taken."""

    def _sweep_with_stale_read(self, snapshot, monkeypatch):
        monkeypatch.setattr(OrderLifecycle, "get", lambda self, order_id: snapshot)
        cancelled = _cancel_pending_order(OrderLifecycle(), "ord-001")
        monkeypatch.undo()
        return cancelled

    def test_order_paid_meanwhile_is_not_counted(self, place_order, monkeypatch):
        place_order()
        snapshot = OrderLifecycle().get("ord-001")
        PaymentConfirmationGate().handle_payment_event("evt-1", "ord-001", "succeeded")

        assert self._sweep_with_stale_read(snapshot, monkeypatch) is False
        assert OrderLifecycle().get("ord-001").status == OrderStatus.PROCESSING.value

    def test_order_cancelled_by_customer_meanwhile_is_not_counted(self, place_order, monkeypatch):
        place_order()
        snapshot = OrderLifecycle().get("ord-001")
        OrderLifecycle().cancel("ord-001", "changed my mind", CancellationActor.CUSTOMER)

        assert self._sweep_with_stale_read(snapshot, monkeypatch) is False
        assert OrderLifecycle().get("ord-001").cancellation_reason == "changed my mind"

    def test_pending_order_is_counted(self, place_order, monkeypatch):
        place_order()
        snapshot = OrderLifecycle().get("ord-001")

        assert self._sweep_with_stale_read(snapshot, monkeypatch) is True
        assert OrderLifecycle().get("ord-001").cancellation_reason == ORDER_EXPIRED_REASON
