"""StockRecord counters, invariants and the ledger write grant."""

import pytest
from protean.exceptions import ValidationError

from commerce.errors import LedgerAccessError
from commerce.stock import ledger
from commerce.stock.events import LowStockDetected, StockCommitted, StockHeld, StockReleased
from commerce.stock.stock import LedgerGrant, StockRecord, issue_ledger_grant


def _record(total=10, threshold=2):
    return StockRecord.register(unit_id="unit-001", total_quantity=total, low_stock_threshold=threshold)


class TestRegistration:
    def test_register_starts_with_nothing_reserved(self):
        record = _record(total=10)
        assert record.total_quantity == 10
        assert record.reserved_quantity == 0
        assert record.available_quantity == 10

    def test_negative_total_is_rejected(self):
        with pytest.raises(ValidationError):
            StockRecord.register(unit_id="unit-001", total_quantity=-1)


class TestLedgerOperations:
    def test_hold_moves_available_to_reserved(self):
        record = _record(total=10)
        record.hold(ledger._grant, 4, "res-1")
        assert record.reserved_quantity == 4
        assert record.available_quantity == 6
        assert isinstance(record._events[-1], StockHeld)

    def test_hold_beyond_available_fails_without_mutating(self):
        record = _record(total=3)
        with pytest.raises(ValidationError):
            record.hold(ledger._grant, 4, "res-1")
        assert record.reserved_quantity == 0

    def test_release_returns_units(self):
        record = _record(total=10)
        record.hold(ledger._grant, 4, "res-1")
        record.release(ledger._grant, 4, "res-1", reason="payment_failed")
        assert record.reserved_quantity == 0
        assert record.available_quantity == 10
        released = record._events[-1]
        assert isinstance(released, StockReleased)
        assert released.reason == "payment_failed"

    def test_cannot_release_more_than_reserved(self):
        record = _record(total=10)
        record.hold(ledger._grant, 2, "res-1")
        with pytest.raises(ValidationError):
            record.release(ledger._grant, 3, "res-1")

    def test_commit_removes_units_from_total_and_reserved(self):
        record = _record(total=10)
        record.hold(ledger._grant, 4, "res-1")
        record.commit(ledger._grant, 4, "res-1")
        assert record.total_quantity == 6
        assert record.reserved_quantity == 0
        assert record.available_quantity == 6
        assert isinstance(record._events[-1], StockCommitted)

    def test_receive_adds_to_total(self):
        record = _record(total=1)
        record.receive(ledger._grant, 9, reference="PO-1")
        assert record.total_quantity == 10

    def test_adjust_below_reserved_is_rejected(self):
        record = _record(total=10)
        record.hold(ledger._grant, 6, "res-1")
        with pytest.raises(ValidationError):
            record.adjust(ledger._grant, 5, "cycle count")
        assert record.total_quantity == 10

    def test_adjust_requires_reason(self):
        record = _record(total=10)
        with pytest.raises(ValidationError):
            record.adjust(ledger._grant, 8, "")

    def test_non_positive_quantities_are_rejected(self):
        record = _record(total=10)
        for quantity in (0, -1):
            with pytest.raises(ValidationError):
                record.hold(ledger._grant, quantity, "res-1")


class TestInvariant:
    def test_reserved_cannot_exceed_total(self):
        record = _record(total=5)
        with pytest.raises(ValidationError):
            record.reserved_quantity = 6


class TestLowStock:
    def test_crossing_threshold_raises_event_once(self):
        record = _record(total=5, threshold=2)
        record.hold(ledger._grant, 2, "res-1")
        assert not any(isinstance(e, LowStockDetected) for e in record._events)

        record.hold(ledger._grant, 1, "res-2")
        low = [e for e in record._events if isinstance(e, LowStockDetected)]
        assert len(low) == 1
        assert low[0].available_quantity == 2

        record.hold(ledger._grant, 1, "res-3")
        assert len([e for e in record._events if isinstance(e, LowStockDetected)]) == 1


class TestWriteGrant:
    def test_grant_is_issued_only_once(self):
        with pytest.raises(LedgerAccessError):
            issue_ledger_grant()

    def test_counters_reject_a_forged_grant(self):
        record = _record(total=10)
        with pytest.raises(LedgerAccessError):
            record.hold(LedgerGrant(), 1, "res-1")
        with pytest.raises(LedgerAccessError):
            record.receive(None, 1)
        assert record.reserved_quantity == 0
        assert record.total_quantity == 10
