"""Webhook receipts — remember which provider notifications were applied."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.payment.payment import Payment


@orderflow.command(part_of="Payment")
class RecordWebhookReceipt:
    payment_id = Identifier(required=True)
    event_type = String(required=True, max_length=100)
    provider_reference = String(max_length=255)


@orderflow.command_handler(part_of=Payment)
class WebhookReceiptHandler:
    @handle(RecordWebhookReceipt)
    def record_webhook_receipt(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        recorded = payment.record_webhook(command.event_type, command.provider_reference)
        if recorded:
            repo.add(payment)
        return recorded
