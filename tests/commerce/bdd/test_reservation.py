"""BDD tests for stock reservation."""

from pytest_bdd import parsers, scenarios, then, when

from commerce.errors import InsufficientStockError
from commerce.reservation.engine import ReservationEngine

scenarios("features/reservation.feature")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.parse('order "{order_id}" reserves {qty_a:d} of "{unit_a}" and {qty_b:d} of "{unit_b}"'))
def reserve_two_lines(context, order_id, qty_a, unit_a, qty_b, unit_b):
    try:
        context["reservation_id"] = ReservationEngine().reserve(order_id, [(unit_a, qty_a), (unit_b, qty_b)]).id
    except InsufficientStockError as exc:
        context["error"] = exc


@when(parsers.parse('the reservation is released because "{reason}"'))
def release_reservation(context, reason):
    ReservationEngine().release(context["reservation_id"], reason)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.parse('the reservation is refused for insufficient stock on "{unit_id}"'))
def refused(context, unit_id):
    assert "reservation_id" not in context
    assert context["error"].unit_id == unit_id
