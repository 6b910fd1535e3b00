"""Error taxonomy for the commerce core.

User-facing and programming errors extend Protean's exception types so the
FastAPI integration and the command pipeline treat them like any other domain
error. Each carries the structured attributes callers need to react to it.
"""

from protean.exceptions import InvalidOperationError, ValidationError


class InsufficientStockError(ValidationError):
    """A reservation line asked for more than the unit has available."""

    def __init__(self, unit_id: str, requested: int, available: int):
        self.unit_id = unit_id
        self.requested = requested
        self.available = available
        super().__init__(
            {"quantity": [f"Insufficient stock for {unit_id}: requested {requested}, available {available}"]}
        )


class IllegalTransitionError(ValidationError):
    """An order status change that is not in the transition table."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot transition from {from_status} to {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__({"status": [message]})


class FraudBlockedError(ValidationError):
    """The fraud-scoring service recommended blocking the checkout."""

    def __init__(self, score: float):
        self.score = score
        super().__init__({"checkout": [f"Checkout blocked by fraud screening (score {score})"]})


class DuplicateReservationError(InvalidOperationError):
    """The order already has a reservation that is not terminal."""

    def __init__(self, order_id: str, reservation_id: str):
        self.order_id = order_id
        self.reservation_id = reservation_id
        super().__init__(f"Order {order_id} already has reservation {reservation_id}")


class InvalidStateError(InvalidOperationError):
    """A reservation operation was attempted from a state that forbids it."""

    def __init__(self, reservation_id: str, status: str, operation: str):
        self.reservation_id = reservation_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} reservation {reservation_id} in status {status}")


class ConcurrencyExhaustedError(InvalidOperationError):
    """Lock acquisition or optimistic retries ran out; the caller may try again later."""

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} could not complete after {attempts} attempts, try again")


class LedgerAccessError(InvalidOperationError):
    """Someone other than the reservation engine asked for stock write access."""
