"""Stock initialization — command and handler."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.inventory.record import InventoryRecord


@orderflow.command(part_of="InventoryRecord")
class InitializeStock:
    """Create the stock record for a (product, variant, warehouse) key."""

    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    available = Integer(default=0, min_value=0)
    reorder_point = Integer(default=10, min_value=0)


@orderflow.command_handler(part_of=InventoryRecord)
class InitializeStockHandler:
    @handle(InitializeStock)
    def initialize_stock(self, command):
        repo = current_domain.repository_for(InventoryRecord)

        if repo.find_by_key(command.product_id, command.variant_id, command.warehouse_id) is not None:
            raise ValidationError(
                {
                    "warehouse_id": [
                        f"Stock for {command.product_id}/{command.variant_id} "
                        f"is already tracked at warehouse {command.warehouse_id}"
                    ]
                }
            )

        record = InventoryRecord.initialize(
            product_id=command.product_id,
            variant_id=command.variant_id,
            warehouse_id=command.warehouse_id,
            available=command.available or 0,
            reorder_point=command.reorder_point if command.reorder_point is not None else 10,
        )
        repo.add(record)
        return str(record.id)
