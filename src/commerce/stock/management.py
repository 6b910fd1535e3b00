"""Stock administration: register units, receive deliveries, adjust counts."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.stock.ledger import StockLedger
from commerce.stock.stock import StockRecord
from commerce.utils.concurrency import run_exclusive, unit_key
from commerce.utils.settings import setting


@commerce.command(part_of="StockRecord")
class RegisterStock:
    unit_id = Identifier(required=True)
    total_quantity = Integer(default=0, min_value=0)
    low_stock_threshold = Integer(min_value=0)  # Optional; defaults to configuration


@commerce.command(part_of="StockRecord")
class ReceiveStock:
    """Add delivered units to a unit's total."""

    unit_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    reference = String(max_length=255)


@commerce.command(part_of="StockRecord")
class AdjustStock:
    """Set a unit's total to a counted value."""

    unit_id = Identifier(required=True)
    new_total = Integer(required=True, min_value=0)
    reason = String(required=True, max_length=500)


@commerce.command_handler(part_of=StockRecord)
class StockManagementHandler:
    @handle(RegisterStock)
    def register_stock(self, command):
        repo = current_domain.repository_for(StockRecord)
        existing = repo._dao.query.filter(unit_id=command.unit_id).all().items
        if existing:
            raise ValidationError({"unit_id": [f"Stock for unit {command.unit_id} is already registered"]})

        threshold = command.low_stock_threshold
        if threshold is None:
            threshold = setting("low_stock_threshold")

        record = StockLedger().register(command.unit_id, command.total_quantity, threshold)
        return str(record.unit_id)

    @handle(ReceiveStock)
    def receive_stock(self, command):
        StockLedger().receive(command.unit_id, command.quantity, reference=command.reference)

    @handle(AdjustStock)
    def adjust_stock(self, command):
        StockLedger().adjust(command.unit_id, command.new_total, command.reason)


def register_stock(unit_id, total_quantity=0, low_stock_threshold=None) -> str:
    return run_exclusive(
        "register_stock",
        [unit_key(unit_id)],
        RegisterStock(
            unit_id=unit_id,
            total_quantity=total_quantity,
            low_stock_threshold=low_stock_threshold,
        ),
    )


def receive_stock(unit_id, quantity, reference=None):
    run_exclusive(
        "receive_stock",
        [unit_key(unit_id)],
        ReceiveStock(unit_id=unit_id, quantity=quantity, reference=reference),
    )


def adjust_stock(unit_id, new_total, reason):
    run_exclusive(
        "adjust_stock",
        [unit_key(unit_id)],
        AdjustStock(unit_id=unit_id, new_total=new_total, reason=reason),
    )


def get_stock(unit_id) -> StockRecord:
    return current_domain.repository_for(StockRecord).get(unit_id)
