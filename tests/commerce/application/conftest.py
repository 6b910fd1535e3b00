import pytest

from commerce.checkout.checkout import Checkout
from commerce.payment.gate import PaymentConfirmationGate
from commerce.stock.management import register_stock


@pytest.fixture()
def stocked():
    """Two units: plenty of ``A`` and a scarce ``B``."""
    register_stock("A", 10)
    register_stock("B", 2)
    return ["A", "B"]


@pytest.fixture()
def place_order(stocked):
    """Check out an order for ``lines`` ({unit_id: quantity}) at 10.00 per unit."""

    def _place(order_id="ord-001", lines=None, customer_id="cust-001"):
        lines = lines or {"A": 2}
        return Checkout().place_order(
            items=[{"unit_id": unit_id, "quantity": qty, "unit_price": 10.0} for unit_id, qty in lines.items()],
            customer_id=customer_id,
            order_id=order_id,
        )

    return _place


@pytest.fixture()
def paid_order(place_order):
    """An order whose payment succeeded: PROCESSING with a confirmed reservation."""

    def _paid(order_id="ord-001", lines=None):
        result = place_order(order_id=order_id, lines=lines)
        PaymentConfirmationGate().handle_payment_event(f"evt-{order_id}", order_id, "succeeded")
        return result

    return _paid
