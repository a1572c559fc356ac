"""Refunds — reserve a slot against the payment, then settle it."""

from protean import handle
from protean.fields import Boolean, Float, Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.payment.payment import Payment, RefundReason


@orderflow.command(part_of="Payment")
class RequestRefund:
    payment_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.01)
    reason = String(required=True, choices=RefundReason)


@orderflow.command(part_of="Payment")
class SettleRefund:
    """Apply the gateway's answer to a pending refund."""

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    succeeded = Boolean(required=True)
    provider_refund_id = String(max_length=255)
    failure_reason = String(max_length=500)


@orderflow.command_handler(part_of=Payment)
class RefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        refund = payment.request_refund(amount=command.amount, reason=command.reason)
        repo.add(payment)
        return str(refund.id)

    @handle(SettleRefund)
    def settle_refund(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        if command.succeeded:
            changed = payment.complete_refund(command.refund_id, provider_refund_id=command.provider_refund_id)
        else:
            changed = payment.fail_refund(command.refund_id, reason=command.failure_reason or "Refund rejected")
        if changed:
            repo.add(payment)
        return changed
