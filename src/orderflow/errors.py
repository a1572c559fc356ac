"""Error taxonomy for the fulfillment workflow.

Every recoverable or rejected condition is a ``ValidationError`` subclass so
that it carries the framework's ``messages`` dict and surfaces as a 4xx from
the API. ``AmbiguousPaymentOutcome`` is the exception: the request was valid,
the outcome is simply unknown until reconciliation runs.
"""

from protean.exceptions import ValidationError


class InsufficientStock(ValidationError):
    """One or more lines could not be reserved."""

    def __init__(self, product_id, variant_id, requested, available, warehouse_id=None):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        self.warehouse_id = warehouse_id
        where = f" at warehouse {warehouse_id}" if warehouse_id else ""
        super().__init__(
            {
                "quantity": [
                    f"Insufficient stock for {product_id}/{variant_id}{where}: "
                    f"requested {requested}, available {available}"
                ]
            }
        )


class CouponError(ValidationError):
    """Base class for coupon rejections. Checkout may be retried without the coupon."""

    reason = "Coupon rejected"

    def __init__(self, code, detail=None):
        self.code = code
        super().__init__({"coupon_code": [detail or f"{self.reason}: {code}"]})


class CouponNotFound(CouponError):
    reason = "Coupon not found"


class CouponExpired(CouponError):
    reason = "Coupon has expired"


class CouponNotYetActive(CouponError):
    reason = "Coupon is not active yet"


class CouponBelowMinimum(CouponError):
    reason = "Order subtotal is below the coupon minimum"


class CouponNotEligible(CouponError):
    reason = "No items in the cart are eligible for this coupon"


class CouponUsageExhausted(CouponError):
    reason = "Coupon usage limit reached"


class PaymentCaptureFailed(ValidationError):
    """The gateway declined the capture. Retry with a fresh checkout attempt."""

    def __init__(self, order_id, reason):
        self.order_id = order_id
        self.reason = reason
        super().__init__({"payment": [f"Payment capture failed: {reason}"]})


class InvalidStateTransition(ValidationError):
    def __init__(self, axis, current, target):
        self.axis = axis
        self.current = current
        self.target = target
        super().__init__({axis: [f"Cannot transition from {current} to {target}"]})


class OverShipment(ValidationError):
    def __init__(self, order_item_id, ordered, already_shipped, requested):
        self.order_item_id = order_item_id
        super().__init__(
            {
                "items": [
                    f"Item {order_item_id}: shipping {requested} more would exceed "
                    f"ordered quantity {ordered} (already shipped {already_shipped})"
                ]
            }
        )


class OverRefund(ValidationError):
    def __init__(self, payment_id, requested, refundable):
        self.payment_id = payment_id
        self.requested = requested
        self.refundable = refundable
        super().__init__(
            {"amount": [f"Refund of {requested} exceeds refundable balance {refundable} on payment {payment_id}"]}
        )


class InvalidWebhookSignature(ValidationError):
    def __init__(self):
        super().__init__({"signature": ["Invalid webhook signature"]})


class AmbiguousPaymentOutcome(Exception):
    """The capture call timed out; the order stays pending until reconciled."""

    def __init__(self, order_id, idempotency_key):
        self.order_id = order_id
        self.idempotency_key = idempotency_key
        super().__init__(f"Payment outcome for order {order_id} is unknown (idempotency key {idempotency_key})")


class RefundDeclined(ValidationError):
    """The gateway rejected a refund; the refund slot has been freed again."""

    def __init__(self, payment_id, reason):
        self.payment_id = payment_id
        self.reason = reason
        super().__init__({"refund": [f"Refund on payment {payment_id} failed: {reason}"]})
