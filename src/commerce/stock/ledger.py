"""Stock ledger: the only code path that writes stock counters.

The ledger takes the StockRecord write grant when this module is first
imported. It is used from inside command handlers, so every method runs in
the handler's unit of work while the caller holds the unit locks.

Multi-line operations validate every line before writing any of them, so a
failure leaves all counters untouched even without a rollback.
"""

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from commerce.errors import InsufficientStockError
from commerce.stock.stock import StockRecord, issue_ledger_grant

logger = structlog.get_logger(__name__)

_grant = issue_ledger_grant()


class StockLedger:
    def __init__(self):
        self._repo = current_domain.repository_for(StockRecord)

    def _load(self, lines) -> dict[str, StockRecord]:
        records = {}
        for line in lines:
            try:
                records[line.unit_id] = self._repo.get(line.unit_id)
            except ObjectNotFoundError:
                raise ValidationError({"unit_id": [f"Unknown unit {line.unit_id}"]}) from None
        return records

    def available(self, unit_id) -> int:
        return self._repo.get(unit_id).available_quantity

    def hold(self, reservation_id, lines):
        """Reserve every line or none of them."""
        records = self._load(lines)
        for line in lines:
            record = records[line.unit_id]
            if record.available_quantity < line.quantity:
                logger.info(
                    "Insufficient stock",
                    unit_id=line.unit_id,
                    requested=line.quantity,
                    available=record.available_quantity,
                )
                raise InsufficientStockError(line.unit_id, line.quantity, record.available_quantity)

        for line in lines:
            records[line.unit_id].hold(_grant, line.quantity, reservation_id)
        for record in records.values():
            self._repo.add(record)

    def release(self, reservation_id, lines, reason=None):
        records = self._load(lines)
        for line in lines:
            records[line.unit_id].release(_grant, line.quantity, reservation_id, reason=reason)
        for record in records.values():
            self._repo.add(record)

    def commit(self, reservation_id, lines):
        records = self._load(lines)
        for line in lines:
            records[line.unit_id].commit(_grant, line.quantity, reservation_id)
        for record in records.values():
            self._repo.add(record)

    def register(self, unit_id, total_quantity, low_stock_threshold) -> StockRecord:
        record = StockRecord.register(
            unit_id=unit_id,
            total_quantity=total_quantity,
            low_stock_threshold=low_stock_threshold,
        )
        self._repo.add(record)
        return record

    def receive(self, unit_id, quantity, reference=None) -> StockRecord:
        record = self._repo.get(unit_id)
        record.receive(_grant, quantity, reference=reference)
        self._repo.add(record)
        return record

    def adjust(self, unit_id, new_total, reason) -> StockRecord:
        record = self._repo.get(unit_id)
        record.adjust(_grant, new_total, reason)
        self._repo.add(record)
        return record
