"""Shared BDD steps for stock, checkout and payment."""

from datetime import timedelta

import pytest
from pytest_bdd import given, parsers, then, when

from commerce.checkout.checkout import Checkout
from commerce.order.lifecycle import OrderLifecycle
from commerce.payment.gate import PaymentConfirmationGate
from commerce.reservation.engine import ReservationEngine
from commerce.reservation.expiry import expire_stale_reservations
from commerce.stock.management import get_stock, register_stock
from commerce.utils.clock import utcnow


@pytest.fixture()
def context():
    """Values handed from one step to the next."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.parse('unit "{unit_id}" has {total:d} units in stock'))
def stocked_unit(unit_id, total):
    register_stock(unit_id, total)


@given(parsers.parse('order "{order_id}" reserved {quantity:d} of "{unit_id}"'))
def reserved_order(context, order_id, quantity, unit_id):
    context["reservation_id"] = ReservationEngine().reserve(order_id, [(unit_id, quantity)]).id


@given(parsers.parse('order "{order_id}" checked out {quantity:d} of "{unit_id}"'))
def checked_out_order(context, order_id, quantity, unit_id):
    result = Checkout().place_order(
        items=[{"unit_id": unit_id, "quantity": quantity, "unit_price": 15.0}],
        order_id=order_id,
    )
    context["reservation_id"] = result.reservation_id


@given(parsers.parse('payment event "{event_id}" reported "{outcome}" for order "{order_id}"'))
def payment_reported(event_id, outcome, order_id):
    PaymentConfirmationGate().handle_payment_event(event_id, order_id, outcome)


@given(parsers.parse("the expiry sweeper ran {minutes:d} minutes later"))
def sweeper_ran(minutes):
    expire_stale_reservations(as_of=utcnow() + timedelta(minutes=minutes))


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.parse('payment event "{event_id}" reports "{outcome}" for order "{order_id}"'))
def payment_reports(context, event_id, outcome, order_id):
    context["gate_result"] = PaymentConfirmationGate().handle_payment_event(event_id, order_id, outcome)


@when(parsers.parse("the expiry sweeper runs {minutes:d} minutes later"))
def sweeper_runs(minutes):
    expire_stale_reservations(as_of=utcnow() + timedelta(minutes=minutes))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.parse('unit "{unit_id}" has {reserved:d} reserved and {available:d} available'))
def unit_counters(unit_id, reserved, available):
    record = get_stock(unit_id)
    assert record.reserved_quantity == reserved
    assert record.available_quantity == available


@then(parsers.parse('order "{order_id}" is "{status}"'))
def order_status(order_id, status):
    assert OrderLifecycle().get(order_id).status == status


@then(parsers.parse('order "{order_id}" is flagged for review'))
def order_flagged(order_id):
    assert OrderLifecycle().get(order_id).needs_review is True


@then(parsers.parse('the reservation is "{status}"'))
def reservation_status(context, status):
    assert ReservationEngine().get(context["reservation_id"]).status == status
