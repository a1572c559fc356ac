"""Domain events for the Shipment aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from orderflow.domain import orderflow


@orderflow.event(part_of="Shipment")
class ShipmentCreated:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    carrier = String(required=True)
    tracking_number = String()
    items = Text(required=True)  # JSON: list of {order_item_id, quantity_shipped}
    created_at = DateTime(required=True)


@orderflow.event(part_of="Shipment")
class ShipmentStatusChanged:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    sequence = Integer(required=True)
    location = String()
    description = String()
    changed_at = DateTime(required=True)


@orderflow.event(part_of="Shipment")
class ShipmentDelivered:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    delivered_at = DateTime(required=True)
