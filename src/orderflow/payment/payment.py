"""Payment aggregate (CQRS) — one capture attempt against the external gateway.

A retried checkout creates a new Payment rather than mutating a failed one.
Once a payment reaches Succeeded or Failed its capture fields are frozen;
the only further changes are Refunds and webhook receipts.

Refunds are reserved before the gateway is called: a Pending refund already
counts against the refundable balance, so two concurrent refund requests
cannot both pass the cap. A refund that the gateway rejects is marked Failed
and stops counting.
"""

from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, String

from orderflow.domain import orderflow
from orderflow.errors import InvalidStateTransition, OverRefund
from orderflow.payment.events import (
    PaymentFailed,
    PaymentInitiated,
    PaymentSucceeded,
    RefundFailed,
    RefundRequested,
    RefundSucceeded,
)
from orderflow.shared.clock import utcnow
from orderflow.shared.money import as_float, money_sum, to_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentAttemptStatus(Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class RefundStatus(Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class RefundReason(Enum):
    CUSTOMER_REQUEST = "customer_request"
    DEFECTIVE_PRODUCT = "defective_product"
    WRONG_ITEM = "wrong_item"
    LATE_DELIVERY = "late_delivery"
    DUPLICATE_CHARGE = "duplicate_charge"
    FRAUD = "fraud"
    OTHER = "other"


# Refunds in these states count against the payment amount
_COUNTED_REFUND_STATES = {RefundStatus.PENDING.value, RefundStatus.SUCCEEDED.value}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="Payment")
class Refund:
    amount = Float(required=True, min_value=0.01)
    reason = String(required=True, choices=RefundReason)
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    provider_refund_id = String(max_length=255)
    failure_reason = String(max_length=500)
    requested_at = DateTime(required=True)
    settled_at = DateTime()


@orderflow.entity(part_of="Payment")
class WebhookReceipt:
    """Marks a (provider_reference, event_type) delivery as already processed."""

    event_type = String(required=True, max_length=100)
    provider_reference = String(max_length=255)
    received_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@orderflow.aggregate
class Payment:
    order_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    idempotency_key = String(required=True, max_length=255, unique=True)
    provider_reference = String(max_length=255)
    status = String(choices=PaymentAttemptStatus, default=PaymentAttemptStatus.PENDING.value)
    failure_reason = String(max_length=500)
    refunds = HasMany(Refund)
    webhook_receipts = HasMany(WebhookReceipt)
    created_at = DateTime()
    settled_at = DateTime()

    @invariant.post
    def refunds_cannot_exceed_amount(self):
        counted = money_sum(r.amount for r in self.refunds if r.status in _COUNTED_REFUND_STATES)
        if counted > to_money(self.amount):
            raise ValidationError({"refunds": ["Total refunds cannot exceed the payment amount"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def initiate(cls, order_id, amount, currency, idempotency_key):
        now = utcnow()
        payment = cls(
            order_id=order_id,
            amount=as_float(to_money(amount)),
            currency=currency,
            idempotency_key=idempotency_key,
            status=PaymentAttemptStatus.PENDING.value,
            created_at=now,
        )
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=str(order_id),
                amount=payment.amount,
                currency=currency,
                idempotency_key=idempotency_key,
                initiated_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Capture outcome
    # -------------------------------------------------------------------
    def mark_succeeded(self, provider_reference=None):
        """Record a capture the provider reports as succeeded.

        A success overrides a failure recorded locally for an abandoned
        checkout: the money was taken, and the caller refunds it.
        """
        status = PaymentAttemptStatus(self.status)
        if status == PaymentAttemptStatus.SUCCEEDED:
            return False

        now = utcnow()
        with atomic_change(self):
            self.status = PaymentAttemptStatus.SUCCEEDED.value
            self.provider_reference = provider_reference or self.provider_reference
            self.settled_at = now
        self.raise_(
            PaymentSucceeded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                provider_reference=self.provider_reference,
                succeeded_at=now,
            )
        )
        return True

    def mark_failed(self, reason, provider_reference=None):
        status = PaymentAttemptStatus(self.status)
        if status == PaymentAttemptStatus.FAILED:
            return False
        if status != PaymentAttemptStatus.PENDING:
            raise InvalidStateTransition("status", status.value, PaymentAttemptStatus.FAILED.value)

        now = utcnow()
        with atomic_change(self):
            self.status = PaymentAttemptStatus.FAILED.value
            self.failure_reason = reason
            self.provider_reference = provider_reference or self.provider_reference
            self.settled_at = now
        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                failed_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    @property
    def refunded_total(self):
        return money_sum(r.amount for r in self.refunds if r.status == RefundStatus.SUCCEEDED.value)

    @property
    def refundable_amount(self):
        counted = money_sum(r.amount for r in self.refunds if r.status in _COUNTED_REFUND_STATES)
        return to_money(self.amount) - counted

    def get_refund(self, refund_id):
        for refund in self.refunds:
            if str(refund.id) == str(refund_id):
                return refund
        raise ValidationError({"refund_id": [f"Refund {refund_id} not found on payment {self.id}"]})

    def request_refund(self, amount, reason):
        if self.status != PaymentAttemptStatus.SUCCEEDED.value:
            raise InvalidStateTransition("status", self.status, "Refunded")

        requested = to_money(amount)
        if requested <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if requested > self.refundable_amount:
            raise OverRefund(str(self.id), requested, self.refundable_amount)

        now = utcnow()
        refund = Refund(
            amount=as_float(requested),
            reason=reason,
            status=RefundStatus.PENDING.value,
            requested_at=now,
        )
        self.add_refunds(refund)
        self.raise_(
            RefundRequested(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                order_id=str(self.order_id),
                amount=refund.amount,
                reason=refund.reason,
                requested_at=now,
            )
        )
        return refund

    def complete_refund(self, refund_id, provider_refund_id=None):
        refund = self.get_refund(refund_id)
        if refund.status == RefundStatus.SUCCEEDED.value:
            return False
        if refund.status != RefundStatus.PENDING.value:
            raise InvalidStateTransition("refund", refund.status, RefundStatus.SUCCEEDED.value)

        now = utcnow()
        refund.status = RefundStatus.SUCCEEDED.value
        refund.provider_refund_id = provider_refund_id
        refund.settled_at = now
        self.raise_(
            RefundSucceeded(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                order_id=str(self.order_id),
                amount=refund.amount,
                provider_refund_id=provider_refund_id,
                refunded_total=as_float(self.refunded_total),
                succeeded_at=now,
            )
        )
        return True

    def fail_refund(self, refund_id, reason):
        refund = self.get_refund(refund_id)
        if refund.status == RefundStatus.FAILED.value:
            return False
        if refund.status != RefundStatus.PENDING.value:
            raise InvalidStateTransition("refund", refund.status, RefundStatus.FAILED.value)

        now = utcnow()
        refund.status = RefundStatus.FAILED.value
        refund.failure_reason = reason
        refund.settled_at = now
        self.raise_(
            RefundFailed(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                order_id=str(self.order_id),
                reason=reason,
                failed_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def has_processed(self, event_type, provider_reference=None) -> bool:
        for receipt in self.webhook_receipts:
            if receipt.event_type == event_type and receipt.provider_reference == provider_reference:
                return True
        return False

    def record_webhook(self, event_type, provider_reference=None) -> bool:
        if self.has_processed(event_type, provider_reference):
            return False
        self.add_webhook_receipts(
            WebhookReceipt(
                event_type=event_type,
                provider_reference=provider_reference,
                received_at=utcnow(),
            )
        )
        return True
