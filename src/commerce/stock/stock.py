"""StockRecord aggregate: the single authoritative row per sellable unit.

Stock Level Model:
    total:     Units physically owned and not yet shipped
    reserved:  Units held by reservations (HELD or CONFIRMED, not committed)
    available: total - reserved (derived, never stored)

The counters are written only by holders of the ledger grant. The grant is
issued exactly once, to ``commerce.stock.ledger``, when that module is
imported; any other caller gets a ``LedgerAccessError``. Order, checkout and
payment code therefore cannot touch stock except through the reservation
engine.
"""

from datetime import UTC, datetime

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer

from commerce.domain import commerce
from commerce.errors import LedgerAccessError
from commerce.stock.events import (
    LowStockDetected,
    StockAdjusted,
    StockCommitted,
    StockHeld,
    StockReceived,
    StockRegistered,
    StockReleased,
)


class LedgerGrant:
    """Capability token authorizing writes to stock counters."""

    __slots__ = ()

    def __repr__(self):
        return "<LedgerGrant>"


_GRANT = LedgerGrant()
_grant_issued = False


def issue_ledger_grant() -> LedgerGrant:
    """Hand out the write grant. Succeeds once per process."""
    global _grant_issued
    if _grant_issued:
        raise LedgerAccessError("Stock ledger write access has already been granted")
    _grant_issued = True
    return _GRANT


def _authorize(grant):
    if grant is not _GRANT:
        raise LedgerAccessError("Stock counters can only be changed through the stock ledger")


@commerce.aggregate
class StockRecord:
    """Total and reserved quantity for one sellable unit (product or variant)."""

    unit_id = Identifier(identifier=True, required=True)
    total_quantity = Integer(default=0, min_value=0)
    reserved_quantity = Integer(default=0, min_value=0)
    low_stock_threshold = Integer(default=5, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @property
    def available_quantity(self) -> int:
        return self.total_quantity - self.reserved_quantity

    @invariant.post
    def reserved_cannot_exceed_total(self):
        if self.reserved_quantity > self.total_quantity:
            raise ValidationError(
                {
                    "reserved_quantity": [
                        f"Reserved quantity ({self.reserved_quantity}) cannot exceed "
                        f"total quantity ({self.total_quantity})"
                    ]
                }
            )

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def register(cls, unit_id, total_quantity=0, low_stock_threshold=5):
        if total_quantity < 0:
            raise ValidationError({"total_quantity": ["Total quantity cannot be negative"]})

        now = datetime.now(UTC)
        record = cls(
            unit_id=unit_id,
            total_quantity=total_quantity,
            reserved_quantity=0,
            low_stock_threshold=low_stock_threshold,
            created_at=now,
            updated_at=now,
        )
        record.raise_(
            StockRegistered(
                unit_id=unit_id,
                total_quantity=total_quantity,
                registered_at=now,
            )
        )
        return record

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _check_low_stock(self, previous_available):
        """Raise LowStockDetected when available drops to the threshold or below."""
        available = self.available_quantity
        if previous_available > self.low_stock_threshold >= available:
            self.raise_(
                LowStockDetected(
                    unit_id=str(self.unit_id),
                    available_quantity=available,
                    threshold=self.low_stock_threshold,
                    detected_at=datetime.now(UTC),
                )
            )

    @staticmethod
    def _require_positive(quantity):
        if quantity is None or quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

    # -------------------------------------------------------------------
    # Ledger operations (grant required)
    # -------------------------------------------------------------------
    def hold(self, grant, quantity, reservation_id):
        """Move ``quantity`` from available to reserved.

        The caller has already checked availability; this re-checks and
        fails without mutating if the unit cannot cover the hold.
        """
        _authorize(grant)
        self._require_positive(quantity)
        if quantity > self.available_quantity:
            raise ValidationError(
                {"quantity": [f"Cannot hold {quantity} units, only {self.available_quantity} available"]}
            )

        previous_available = self.available_quantity
        now = datetime.now(UTC)
        with atomic_change(self):
            self.reserved_quantity += quantity
            self.updated_at = now

        self.raise_(
            StockHeld(
                unit_id=str(self.unit_id),
                reservation_id=str(reservation_id),
                quantity=quantity,
                total_quantity=self.total_quantity,
                reserved_quantity=self.reserved_quantity,
                held_at=now,
            )
        )
        self._check_low_stock(previous_available)

    def release(self, grant, quantity, reservation_id, reason=None):
        """Return reserved ``quantity`` to available."""
        _authorize(grant)
        self._require_positive(quantity)
        if quantity > self.reserved_quantity:
            raise ValidationError(
                {"quantity": [f"Cannot release {quantity} units, only {self.reserved_quantity} reserved"]}
            )

        now = datetime.now(UTC)
        with atomic_change(self):
            self.reserved_quantity -= quantity
            self.updated_at = now

        self.raise_(
            StockReleased(
                unit_id=str(self.unit_id),
                reservation_id=str(reservation_id),
                quantity=quantity,
                reason=reason,
                total_quantity=self.total_quantity,
                reserved_quantity=self.reserved_quantity,
                released_at=now,
            )
        )

    def commit(self, grant, quantity, reservation_id):
        """Finalize a sale: the units leave both reserved and total."""
        _authorize(grant)
        self._require_positive(quantity)
        if quantity > self.reserved_quantity:
            raise ValidationError(
                {"quantity": [f"Cannot commit {quantity} units, only {self.reserved_quantity} reserved"]}
            )

        now = datetime.now(UTC)
        with atomic_change(self):
            self.total_quantity -= quantity
            self.reserved_quantity -= quantity
            self.updated_at = now

        self.raise_(
            StockCommitted(
                unit_id=str(self.unit_id),
                reservation_id=str(reservation_id),
                quantity=quantity,
                total_quantity=self.total_quantity,
                reserved_quantity=self.reserved_quantity,
                committed_at=now,
            )
        )

    def receive(self, grant, quantity, reference=None):
        _authorize(grant)
        self._require_positive(quantity)

        now = datetime.now(UTC)
        with atomic_change(self):
            self.total_quantity += quantity
            self.updated_at = now

        self.raise_(
            StockReceived(
                unit_id=str(self.unit_id),
                quantity=quantity,
                reference=reference,
                total_quantity=self.total_quantity,
                reserved_quantity=self.reserved_quantity,
                received_at=now,
            )
        )

    def adjust(self, grant, new_total, reason):
        """Set the physical count after a stock check, shrinkage or correction."""
        _authorize(grant)
        if new_total is None or new_total < 0:
            raise ValidationError({"total_quantity": ["Total quantity cannot be negative"]})
        if new_total < self.reserved_quantity:
            raise ValidationError(
                {
                    "total_quantity": [
                        f"Cannot adjust total to {new_total}: {self.reserved_quantity} units are reserved"
                    ]
                }
            )
        if not reason:
            raise ValidationError({"reason": ["Adjustment reason is required"]})

        previous_total = self.total_quantity
        previous_available = self.available_quantity
        now = datetime.now(UTC)
        with atomic_change(self):
            self.total_quantity = new_total
            self.updated_at = now

        self.raise_(
            StockAdjusted(
                unit_id=str(self.unit_id),
                previous_total=previous_total,
                total_quantity=self.total_quantity,
                reserved_quantity=self.reserved_quantity,
                reason=reason,
                adjusted_at=now,
            )
        )
        self._check_low_stock(previous_available)
