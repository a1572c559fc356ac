"""Post-shipment lifecycle — delivered, returned and disputed."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order


@orderflow.command(part_of="Order")
class MarkOrderDelivered:
    order_id = Identifier(required=True)


@orderflow.command(part_of="Order")
class MarkOrderReturned:
    order_id = Identifier(required=True)
    reason = String(max_length=500)


@orderflow.command(part_of="Order")
class MarkOrderDisputed:
    order_id = Identifier(required=True)
    reason = String(max_length=500)


@orderflow.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(MarkOrderDelivered)
    def mark_delivered(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if order.mark_delivered():
            repo.add(order)

    @handle(MarkOrderReturned)
    def mark_returned(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_returned(command.reason)
        repo.add(order)

    @handle(MarkOrderDisputed)
    def mark_disputed(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if order.mark_disputed(command.reason):
            repo.add(order)
