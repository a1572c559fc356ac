"""Refund bookkeeping on the order — command and handler."""

from protean import handle
from protean.fields import Float, Identifier
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order


@orderflow.command(part_of="Order")
class RecordOrderRefund:
    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    refunded_total = Float(required=True, min_value=0.0)
    payment_amount = Float(required=True, min_value=0.0)


@orderflow.command_handler(part_of=Order)
class OrderRefundHandler:
    @handle(RecordOrderRefund)
    def record_refund(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_refund(
            payment_id=command.payment_id,
            refunded_total=command.refunded_total,
            payment_amount=command.payment_amount,
        )
        repo.add(order)
