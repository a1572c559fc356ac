"""Shipment creation — command and handler."""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order
from orderflow.shipment.shipment import Shipment


@orderflow.command(part_of="Shipment")
class CreateShipment:
    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    carrier = String(required=True, max_length=100)
    tracking_number = String(max_length=255)
    quantities = Text(required=True)  # JSON: {order_item_id: quantity}


@orderflow.command_handler(part_of=Shipment)
class CreateShipmentHandler:
    @handle(CreateShipment)
    def create_shipment(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        items_data = []
        for item_id, quantity in json.loads(command.quantities).items():
            item = order.get_item(item_id)
            items_data.append(
                {
                    "order_item_id": str(item.id),
                    "product_id": str(item.product_id),
                    "variant_id": str(item.variant_id),
                    "quantity_shipped": quantity,
                }
            )

        shipment = Shipment.create(
            shipment_id=command.shipment_id,
            order_id=command.order_id,
            carrier=command.carrier,
            tracking_number=command.tracking_number,
            items_data=items_data,
        )
        current_domain.repository_for(Shipment).add(shipment)
        return str(shipment.id)
