"""Domain events for the Payment aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from orderflow.domain import orderflow


@orderflow.event(part_of="Payment")
class PaymentInitiated:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    idempotency_key = String(required=True)
    initiated_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class PaymentSucceeded:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    provider_reference = String()
    succeeded_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class RefundRequested:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True)
    requested_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class RefundSucceeded:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    provider_refund_id = String()
    refunded_total = Float(required=True)
    succeeded_at = DateTime(required=True)


@orderflow.event(part_of="Payment")
class RefundFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)
