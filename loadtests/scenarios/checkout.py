"""Checkout load scenarios.

CheckoutUser walks the happy path and the payment-failure path: checkout,
then a payment webhook (delivered twice, as processors do) and, for paid
orders, shipment tracking. HotUnitUser has every user fight over a handful
of units with little stock, which is where overselling would show up: the
expected responses are 201 or 409, never a 5xx.
"""

import random

from locust import HttpUser, SequentialTaskSet, between, task

from loadtests.data_generators import checkout_data, payment_event, register_stock_data, unit_id
from loadtests.helpers.response import extract_error_detail

WEBHOOK_HEADERS = {"x-gateway-signature": "test-signature"}
CATALOGUE_SIZE = 50
HOT_UNITS = 3


def _ensure_stock(client, count, quantity, name):
    for index in range(count):
        with client.post("/stock", json=register_stock_data(index, quantity), name=name, catch_response=True) as resp:
            # Another user registered it first
            if resp.status_code in (201, 400):
                resp.success()


class CheckoutFlow(SequentialTaskSet):
    order_id = None

    @task
    def place_order(self):
        units = [unit_id(i) for i in range(CATALOGUE_SIZE)]
        with self.client.post(
            "/checkout",
            json=checkout_data(units),
            name="POST /checkout",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                self.order_id = resp.json()["order_id"]
            elif resp.status_code == 409:
                resp.success()
                self.order_id = None
                self.interrupt()
            else:
                resp.failure(extract_error_detail(resp))
                self.interrupt()

    @task
    def pay(self):
        event = payment_event(self.order_id, succeeded=random.random() < 0.85)
        for _ in range(2):
            self.client.post(
                "/payments/webhook",
                json=event,
                headers=WEBHOOK_HEADERS,
                name="POST /payments/webhook",
            )

    @task
    def ship(self):
        order = self.client.get(f"/orders/{self.order_id}", name="GET /orders/[id]").json()
        if order.get("status") == "Processing":
            self.client.post(
                f"/orders/{self.order_id}/shipment",
                json={"carrier": "fake", "tracking_number": f"TRK-{self.order_id[:12]}"},
                name="POST /orders/[id]/shipment",
            )
        self.interrupt()


class CheckoutUser(HttpUser):
    wait_time = between(0.5, 2)
    tasks = [CheckoutFlow]

    def on_start(self):
        _ensure_stock(self.client, CATALOGUE_SIZE, 10_000, "[SETUP] POST /stock")


class HotUnitUser(HttpUser):
    """Every checkout competes for the same few units."""

    wait_time = between(0.05, 0.2)

    def on_start(self):
        _ensure_stock(self.client, HOT_UNITS, 100, "[SETUP] POST /stock (hot)")

    @task
    def checkout_hot_unit(self):
        units = [unit_id(i) for i in range(HOT_UNITS)]
        with self.client.post(
            "/checkout",
            json=checkout_data(units, max_lines=1, max_quantity=2),
            name="[HOT] POST /checkout",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()
            else:
                resp.failure(extract_error_detail(resp))
