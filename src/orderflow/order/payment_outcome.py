"""Capture outcome — confirm or fail an order once the gateway has answered."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order


@orderflow.command(part_of="Order")
class RecordPaymentAttempt:
    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)


@orderflow.command(part_of="Order")
class ConfirmOrderPayment:
    order_id = Identifier(required=True)
    payment_id = Identifier()
    provider_reference = String(max_length=255)


@orderflow.command(part_of="Order")
class FailOrderPayment:
    order_id = Identifier(required=True)
    payment_id = Identifier()
    reason = String(required=True, max_length=500)


@orderflow.command_handler(part_of=Order)
class PaymentOutcomeHandler:
    @handle(RecordPaymentAttempt)
    def record_payment_attempt(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_payment_attempt(command.payment_id)
        repo.add(order)

    @handle(ConfirmOrderPayment)
    def confirm_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        changed = order.confirm_payment(
            payment_id=command.payment_id,
            provider_reference=command.provider_reference,
        )
        if changed:
            repo.add(order)
        return changed

    @handle(FailOrderPayment)
    def fail_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        changed = order.fail_payment(reason=command.reason, payment_id=command.payment_id)
        if changed:
            repo.add(order)
        return changed
