"""Repository for the Shipment aggregate."""

from orderflow.domain import orderflow
from orderflow.shipment.shipment import Shipment


@orderflow.repository(part_of=Shipment)
class ShipmentRepository:
    def find_for_order(self, order_id) -> list[Shipment]:
        results = self._dao.query.filter(order_id=str(order_id)).all()
        return sorted(results.items, key=lambda s: s.created_at)

    def find_by_tracking_number(self, tracking_number) -> Shipment | None:
        results = self._dao.query.filter(tracking_number=tracking_number).all()
        return results.items[0] if results.items else None
