"""Reservation status machine and line validation."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from commerce.errors import InvalidStateError
from commerce.reservation.events import ReservationConfirmed, ReservationReleased
from commerce.reservation.reservation import (
    EXPIRY_REASON,
    Line,
    Reservation,
    ReservationStatus,
    normalize_lines,
)


def _held(lines=None):
    lines = normalize_lines(lines or [{"unit_id": "A", "quantity": 2}, {"unit_id": "B", "quantity": 1}])
    return Reservation.hold(
        reservation_id="res-001",
        order_id="ord-001",
        lines=lines,
        expires_at=datetime.now(UTC) + timedelta(minutes=15),
    )


class TestNormalizeLines:
    def test_accepts_dicts_tuples_and_lines(self):
        lines = normalize_lines([{"unit_id": "A", "quantity": 1}, ("B", 2), Line("C", 3)])
        assert lines == [Line("A", 1), Line("B", 2), Line("C", 3)]

    def test_empty_is_rejected(self):
        with pytest.raises(ValidationError):
            normalize_lines([])

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, None])
    def test_quantity_must_be_positive_integer(self, quantity):
        with pytest.raises(ValidationError):
            normalize_lines([{"unit_id": "A", "quantity": quantity}])

    def test_duplicate_units_are_rejected(self):
        with pytest.raises(ValidationError):
            normalize_lines([("A", 1), ("A", 2)])


class TestHold:
    def test_new_reservation_is_held_with_lines_in_order(self):
        reservation = _held()
        assert reservation.status == ReservationStatus.HELD.value
        assert reservation.requested_lines == [Line("A", 2), Line("B", 1)]
        assert reservation.unit_ids == ["A", "B"]
        assert reservation.owns_stock

    def test_matches_compares_requested_lines(self):
        reservation = _held()
        assert reservation.matches([Line("A", 2), Line("B", 1)])
        assert not reservation.matches([Line("A", 1), Line("B", 1)])


class TestConfirm:
    def test_confirm_held(self):
        reservation = _held()
        assert reservation.confirm() is True
        assert reservation.status == ReservationStatus.CONFIRMED.value
        assert reservation.confirmed_at is not None
        assert isinstance(reservation._events[-1], ReservationConfirmed)

    def test_confirm_is_idempotent(self):
        reservation = _held()
        reservation.confirm()
        event_count = len(reservation._events)
        assert reservation.confirm() is False
        assert len(reservation._events) == event_count

    def test_confirm_after_release_raises(self):
        reservation = _held()
        reservation.release("payment_failed")
        with pytest.raises(InvalidStateError) as exc:
            reservation.confirm()
        assert exc.value.status == ReservationStatus.RELEASED.value


class TestRelease:
    def test_release_held(self):
        reservation = _held()
        assert reservation.release("order_cancelled") is True
        assert reservation.status == ReservationStatus.RELEASED.value
        assert reservation.release_reason == "order_cancelled"
        assert not reservation.owns_stock
        assert isinstance(reservation._events[-1], ReservationReleased)

    def test_expiry_reason_marks_expired(self):
        reservation = _held()
        reservation.release(EXPIRY_REASON)
        assert reservation.status == ReservationStatus.EXPIRED.value
        assert reservation.is_released

    def test_release_is_idempotent(self):
        reservation = _held()
        reservation.release(EXPIRY_REASON)
        assert reservation.release("payment_failed") is False
        assert reservation.status == ReservationStatus.EXPIRED.value

    def test_release_after_confirm_raises(self):
        reservation = _held()
        reservation.confirm()
        with pytest.raises(InvalidStateError):
            reservation.release("payment_failed")
        assert reservation.status == ReservationStatus.CONFIRMED.value


class TestStockFinalization:
    def test_commit_confirmed(self):
        reservation = _held()
        reservation.confirm()
        assert reservation.mark_committed() is True
        assert reservation.mark_committed() is False
        assert not reservation.owns_stock

    def test_commit_requires_confirmed(self):
        reservation = _held()
        with pytest.raises(InvalidStateError):
            reservation.mark_committed()

    def test_restock_after_commit_raises(self):
        reservation = _held()
        reservation.confirm()
        reservation.mark_committed()
        with pytest.raises(InvalidStateError):
            reservation.mark_restocked()

    def test_restock_confirmed(self):
        reservation = _held()
        reservation.confirm()
        assert reservation.mark_restocked() is True
        assert not reservation.owns_stock
        assert reservation.status == ReservationStatus.CONFIRMED.value
