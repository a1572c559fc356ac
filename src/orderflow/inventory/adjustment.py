"""Manual stock adjustment — command and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.inventory.record import InventoryRecord


@orderflow.command(part_of="InventoryRecord")
class AdjustStock:
    """Correct physical stock after receiving, damage or a cycle count."""

    inventory_record_id = Identifier(required=True)
    delta = Integer(required=True)
    reason = String(required=True, max_length=500)
    reference_id = String(max_length=255)


@orderflow.command_handler(part_of=InventoryRecord)
class AdjustStockHandler:
    @handle(AdjustStock)
    def adjust_stock(self, command):
        repo = current_domain.repository_for(InventoryRecord)
        record = repo.get(command.inventory_record_id)
        record.adjust(
            delta=command.delta,
            reason=command.reason,
            reference_id=command.reference_id,
        )
        repo.add(record)
