"""Domain events for the InventoryRecord aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="InventoryRecord")
class StockInitialized:
    __version__ = 1

    inventory_record_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    available = Integer(required=True)
    reorder_point = Integer()
    initialized_at = DateTime(required=True)


@orderflow.event(part_of="InventoryRecord")
class StockReserved:
    __version__ = 1

    inventory_record_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    reserved = Integer(required=True)
    reserved_at = DateTime(required=True)


@orderflow.event(part_of="InventoryRecord")
class ReservationCommitted:
    __version__ = 1

    inventory_record_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    reserved = Integer(required=True)
    committed_at = DateTime(required=True)


@orderflow.event(part_of="InventoryRecord")
class ReservationReleased:
    __version__ = 1

    inventory_record_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    reason = String(max_length=500)
    available = Integer(required=True)
    reserved = Integer(required=True)
    released_at = DateTime(required=True)


@orderflow.event(part_of="InventoryRecord")
class StockAdjusted:
    __version__ = 1

    inventory_record_id = Identifier(required=True)
    delta = Integer(required=True)
    reason = String(required=True, max_length=500)
    previous_available = Integer(required=True)
    new_available = Integer(required=True)
    adjusted_at = DateTime(required=True)


@orderflow.event(part_of="InventoryRecord")
class LowStockDetected:
    __version__ = 1

    inventory_record_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    free_stock = Integer(required=True)
    reorder_point = Integer(required=True)
