"""Faker-based payload generators for the checkout load scenarios.

Payloads match the field names of the API's Pydantic request schemas.
Unit ids are namespaced per run so repeated runs against the same server
never collide with stock registered earlier.
"""

import random
import uuid

from faker import Faker

fake = Faker()

RUN_ID = uuid.uuid4().hex[:6]


def unit_id(index: int) -> str:
    return f"LT-{RUN_ID}-SKU-{index:04d}"


def customer_id() -> str:
    return f"cust-{fake.user_name()[:12]}-{uuid.uuid4().hex[:4]}"


def register_stock_data(index: int, quantity: int) -> dict:
    return {"unit_id": unit_id(index), "total_quantity": quantity, "low_stock_threshold": 5}


def checkout_data(unit_ids: list[str], max_lines: int = 3, max_quantity: int = 3) -> dict:
    chosen = random.sample(unit_ids, k=min(len(unit_ids), random.randint(1, max_lines)))
    return {
        "customer_id": customer_id(),
        "items": [
            {
                "unit_id": unit,
                "quantity": random.randint(1, max_quantity),
                "unit_price": round(random.uniform(5, 200), 2),
            }
            for unit in chosen
        ],
        "tax": round(random.uniform(0, 10), 2),
        "shipping": random.choice([0.0, 4.99, 9.99]),
    }


def payment_event(order_id: str, succeeded: bool = True) -> dict:
    return {
        "provider_event_id": f"evt_{uuid.uuid4().hex[:16]}",
        "order_id": order_id,
        "outcome": "succeeded" if succeeded else "failed",
    }
