"""BDD tests for tracking reconciliation."""

from datetime import datetime

from pytest_bdd import given, parsers, scenarios, then, when

from commerce.tracking.reconciliation import TrackingReconciler

scenarios("features/tracking.feature")


@given(parsers.parse('order "{order_id}" ships with tracking number "{tracking_number}"'))
def shipment_registered(order_id, tracking_number):
    TrackingReconciler().register_shipment(order_id, "fake", tracking_number)


@given(parsers.parse('the carrier reported "{status}" at "{occurred_at}"'))
def carrier_reported(status, occurred_at):
    TrackingReconciler().ingest("ord-1", status, datetime.fromisoformat(occurred_at))


@when(parsers.parse('the carrier reports "{status}" at "{occurred_at}"'))
def carrier_reports(context, status, occurred_at):
    context["outcome"] = TrackingReconciler().ingest("ord-1", status, datetime.fromisoformat(occurred_at))


@then(parsers.parse('the update is "{outcome}"'))
def update_outcome(context, outcome):
    assert context["outcome"].value == outcome
