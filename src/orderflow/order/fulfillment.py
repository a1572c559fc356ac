"""Fulfillment bookkeeping on the order — command and handler."""

import json

from protean import handle
from protean.fields import Identifier, Text
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order


@orderflow.command(part_of="Order")
class RecordOrderFulfillment:
    order_id = Identifier(required=True)
    shipment_id = Identifier(required=True)
    quantities = Text(required=True)  # JSON: {order_item_id: quantity}


@orderflow.command_handler(part_of=Order)
class OrderFulfillmentHandler:
    @handle(RecordOrderFulfillment)
    def record_fulfillment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_fulfillment(json.loads(command.quantities), shipment_id=command.shipment_id)
        repo.add(order)
