"""Payment capture — record an attempt and the gateway's answer to it."""

from protean import handle
from protean.fields import Boolean, Float, Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.payment.payment import Payment


@orderflow.command(part_of="Payment")
class InitiatePayment:
    order_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    idempotency_key = String(required=True, max_length=255)


@orderflow.command(part_of="Payment")
class RecordCaptureOutcome:
    payment_id = Identifier(required=True)
    succeeded = Boolean(required=True)
    provider_reference = String(max_length=255)
    failure_reason = String(max_length=500)


@orderflow.command_handler(part_of=Payment)
class CaptureHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        payment = Payment.initiate(
            order_id=command.order_id,
            amount=command.amount,
            currency=command.currency,
            idempotency_key=command.idempotency_key,
        )
        current_domain.repository_for(Payment).add(payment)
        return str(payment.id)

    @handle(RecordCaptureOutcome)
    def record_capture_outcome(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        if command.succeeded:
            changed = payment.mark_succeeded(provider_reference=command.provider_reference)
        else:
            changed = payment.mark_failed(
                reason=command.failure_reason or "Payment declined",
                provider_reference=command.provider_reference,
            )
        if changed:
            repo.add(payment)
        return changed
