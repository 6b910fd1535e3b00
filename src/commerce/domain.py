"""Commerce bounded context: Inventory Reservation and Order Fulfillment.

Owns the stock ledger, reservations held against it, the order lifecycle,
payment outcome confirmation and carrier tracking reconciliation. Everything
lives in one domain so a payment outcome can confirm a reservation, move the
order and record the processed event inside a single unit of work.
"""

import structlog
from protean.domain import Domain

commerce = Domain(name="commerce")

logger = structlog.get_logger(__name__)
