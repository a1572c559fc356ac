"""Repository for the InventoryRecord aggregate."""

from orderflow.domain import orderflow
from orderflow.inventory.record import InventoryRecord


@orderflow.repository(part_of=InventoryRecord)
class InventoryRecordRepository:
    """Lookups by the natural (product, variant, warehouse) key."""

    def find_by_key(self, product_id, variant_id, warehouse_id) -> InventoryRecord | None:
        results = self._dao.query.filter(
            product_id=str(product_id),
            variant_id=str(variant_id),
            warehouse_id=str(warehouse_id),
        ).all()
        return results.items[0] if results.items else None

    def find_for_variant(self, product_id, variant_id) -> list[InventoryRecord]:
        results = self._dao.query.filter(
            product_id=str(product_id),
            variant_id=str(variant_id),
        ).all()
        return sorted(results.items, key=lambda r: str(r.warehouse_id))
