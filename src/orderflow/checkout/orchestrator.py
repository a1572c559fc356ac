"""OrderOrchestrator — the checkout saga and the order's later life.

Checkout runs as forward steps with explicit compensation rather than one
cross-aggregate transaction:

    reserve every line -> apply coupon -> place order -> capture payment
                                                          |-> commit + confirm
                                                          |-> release + cancel + rollback coupon
                                                          '-> timeout: leave pending for reconciliation

Lock order is checkout -> order -> payment -> inventory/coupon. The checkout
lock covers one idempotency key and one cart from the replay lookup until the
pending order exists. No lock is held while the gateway is called, and the
capture itself runs on a worker thread so that the caller's timeout can be
enforced.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as CaptureTimeout
from decimal import ROUND_HALF_UP
from uuid import uuid4

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from orderflow import config
from orderflow.cart.manager import CartManager
from orderflow.coupon.evaluator import CouponEvaluator
from orderflow.coupon.redemption import CartLine
from orderflow.errors import AmbiguousPaymentOutcome, InvalidStateTransition, PaymentCaptureFailed
from orderflow.gateway import get_gateway
from orderflow.inventory.ledger import InventoryLedger, ReservationHandle
from orderflow.order.cancellation import CancelOrder
from orderflow.order.lifecycle import MarkOrderDelivered, MarkOrderDisputed, MarkOrderReturned
from orderflow.order.order import Order, OrderPricing, PaymentStatus, ReservationState
from orderflow.order.payment_outcome import ConfirmOrderPayment, FailOrderPayment, RecordPaymentAttempt
from orderflow.order.placement import PlaceOrder
from orderflow.payment.capture import InitiatePayment, RecordCaptureOutcome
from orderflow.payment.payment import Payment, RefundReason
from orderflow.payment.processor import RefundProcessor
from orderflow.shared.money import CENT, ZERO, as_float, to_money
from orderflow.utils.locks import checkout_locks, order_locks, payment_locks

logger = structlog.get_logger(__name__)


def _handle_for(order, reservation) -> ReservationHandle:
    return ReservationHandle(
        reservation_id=str(reservation.reservation_id),
        inventory_record_id=str(reservation.inventory_record_id),
        product_id=str(reservation.product_id),
        variant_id=str(reservation.variant_id),
        warehouse_id=str(reservation.warehouse_id),
        order_id=str(order.id),
        quantity=reservation.quantity,
    )


class OrderOrchestrator:
    def __init__(self, ledger=None, coupons=None, carts=None, refunds=None, gateway=None):
        self.ledger = ledger or InventoryLedger()
        self.coupons = coupons or CouponEvaluator()
        self.carts = carts or CartManager()
        self._gateway = gateway
        self.refunds = refunds or RefundProcessor(gateway=gateway)

    @property
    def gateway(self):
        return self._gateway or get_gateway()

    def _orders(self):
        return current_domain.repository_for(Order)

    def _payments(self):
        return current_domain.repository_for(Payment)

    def get_order(self, order_id) -> Order:
        return self._orders().get(str(order_id))

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def place_order(
        self,
        cart_id,
        shipping_address=None,
        coupon_code=None,
        warehouse_preference=None,
        idempotency_key=None,
        timeout=None,
    ) -> Order:
        """Turn a cart into a paid order, or fail leaving nothing held.

        Raises ``InsufficientStock`` or a ``CouponError`` before any order
        exists, ``PaymentCaptureFailed`` once the order has been cancelled
        and compensated, and ``AmbiguousPaymentOutcome`` when the capture
        did not answer within ``timeout`` seconds.
        """
        idempotency_key = idempotency_key or uuid4().hex
        with checkout_locks.hold(("idempotency_key", idempotency_key)), checkout_locks.hold(("cart", str(cart_id))):
            existing = self._orders().find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "Checkout replayed for idempotency key",
                    idempotency_key=idempotency_key,
                    order_id=str(existing.id),
                )
                return existing
            order = self._open_order(cart_id, shipping_address, coupon_code, warehouse_preference, idempotency_key)

        order_id = str(order.id)
        payment_id = current_domain.process(
            InitiatePayment(
                order_id=order_id,
                amount=order.grand_total,
                currency=order.currency,
                idempotency_key=idempotency_key,
            ),
            asynchronous=False,
        )
        current_domain.process(RecordPaymentAttempt(order_id=order_id, payment_id=payment_id), asynchronous=False)

        result = self._capture(order, idempotency_key, timeout)
        order = self.resolve_payment(
            order_id,
            succeeded=result.succeeded,
            provider_reference=result.provider_reference,
            failure_reason=result.failure_reason,
        )
        if order.payment_status != PaymentStatus.PAID.value:
            reason = result.failure_reason or order.cancellation_reason or "Payment declined"
            logger.warning("Checkout failed at payment capture", order_id=order_id, reason=reason)
            raise PaymentCaptureFailed(order_id, reason)
        return order

    def _open_order(self, cart_id, shipping_address, coupon_code, warehouse_preference, idempotency_key) -> Order:
        """Reserve stock, apply the coupon and create the pending order."""
        cart = self.carts.get_cart(cart_id)
        if not cart.items:
            raise ValidationError({"cart": ["Cannot check out an empty cart"]})
        if cart.is_expired():
            raise ValidationError({"cart": ["Cart has expired"]})
        live = self._orders().find_live_for_cart(cart.id)
        if live is not None:
            logger.warning("Checkout rejected; cart already has an order", cart_id=str(cart.id), order_id=str(live.id))
            raise ValidationError({"cart": [f"Cart is already being checked out as order {live.order_number}"]})

        order_id = str(uuid4())
        handles = self._reserve_cart(cart, order_id, warehouse_preference)

        subtotal = cart.subtotal
        discount, free_shipping, applied_code = ZERO, False, None
        if coupon_code:
            try:
                application = self.coupons.apply(
                    coupon_code,
                    subtotal,
                    cart_contents=[
                        CartLine(
                            product_id=str(item.product_id),
                            variant_id=str(item.variant_id),
                            quantity=item.quantity,
                            unit_price=item.unit_price,
                            category=item.category,
                        )
                        for item in cart.items
                    ],
                    customer_id=cart.customer_id,
                    order_id=order_id,
                )
            except Exception:
                self.ledger.release_all(handles, reason="Coupon rejected at checkout")
                raise
            discount, free_shipping, applied_code = (
                application.discount_amount,
                application.free_shipping,
                application.code,
            )

        tax = ((subtotal - discount) * config.tax_rate()).quantize(CENT, rounding=ROUND_HALF_UP)
        shipping = ZERO if free_shipping else to_money(config.shipping_flat_rate())
        pricing = OrderPricing.compute(subtotal, discount, tax, shipping)

        try:
            current_domain.process(
                PlaceOrder(
                    order_id=order_id,
                    customer_id=cart.customer_id,
                    session_id=cart.session_id,
                    cart_id=str(cart.id),
                    items=json.dumps(
                        [
                            {
                                "product_id": str(item.product_id),
                                "variant_id": str(item.variant_id),
                                "title": item.title,
                                "category": item.category,
                                "quantity": item.quantity,
                                "unit_price": item.unit_price,
                            }
                            for item in cart.items
                        ]
                    ),
                    reservations=json.dumps(
                        [
                            {
                                "reservation_id": h.reservation_id,
                                "inventory_record_id": h.inventory_record_id,
                                "product_id": h.product_id,
                                "variant_id": h.variant_id,
                                "warehouse_id": h.warehouse_id,
                                "quantity": h.quantity,
                            }
                            for h in handles
                        ]
                    ),
                    shipping_address=json.dumps(dict(shipping_address)) if shipping_address else None,
                    subtotal=pricing.subtotal,
                    discount_total=pricing.discount_total,
                    tax_total=pricing.tax_total,
                    shipping_total=pricing.shipping_total,
                    currency=cart.currency or config.default_currency(),
                    coupon_code=applied_code,
                    free_shipping=free_shipping,
                    idempotency_key=idempotency_key,
                ),
                asynchronous=False,
            )
        except Exception:
            self.ledger.release_all(handles, reason="Order could not be created")
            if applied_code:
                self.coupons.rollback(applied_code, order_id)
            raise

        order = self.get_order(order_id)
        logger.info(
            "Order placed",
            order_id=order_id,
            order_number=order.order_number,
            grand_total=order.grand_total,
            reservations=len(handles),
        )
        return order

    def _reserve_cart(self, cart, order_id, warehouse_preference):
        handles: list[ReservationHandle] = []
        try:
            for item in cart.items:
                if warehouse_preference:
                    candidates = list(warehouse_preference)
                else:
                    candidates = [r.warehouse_id for r in self.ledger.find_records(item.product_id, item.variant_id)]
                handles.extend(
                    self.ledger.reserve_line(
                        item.product_id,
                        item.variant_id,
                        item.quantity,
                        order_id,
                        candidates,
                    )
                )
        except Exception:
            logger.warning(
                "Checkout reservation failed; releasing",
                cart_id=str(cart.id),
                order_id=order_id,
                released=len(handles),
            )
            self.ledger.release_all(handles, reason="Checkout could not reserve every line")
            raise
        return handles

    def _capture(self, order, idempotency_key, timeout):
        timeout = config.payment_capture_timeout() if timeout is None else timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="capture")
        future = executor.submit(
            self.gateway.capture,
            str(order.id),
            order.grand_total,
            order.currency,
            idempotency_key,
        )
        try:
            return future.result(timeout=timeout)
        except CaptureTimeout as exc:
            logger.error(
                "Payment capture timed out; order left pending",
                order_id=str(order.id),
                idempotency_key=idempotency_key,
                timeout=timeout,
            )
            raise AmbiguousPaymentOutcome(str(order.id), idempotency_key) from exc
        except Exception as exc:
            logger.error(
                "Payment capture errored; order left pending",
                order_id=str(order.id),
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            raise AmbiguousPaymentOutcome(str(order.id), idempotency_key) from exc
        finally:
            executor.shutdown(wait=False)

    # -------------------------------------------------------------------
    # Capture outcome
    # -------------------------------------------------------------------
    def resolve_payment(self, order_id, succeeded, provider_reference=None, failure_reason=None) -> Order:
        """Apply a capture outcome to a pending order. Safe to call repeatedly.

        A success that arrives after the order was already cancelled is
        recorded on the payment and refunded in full; the order stays
        cancelled.
        """
        order_id = str(order_id)
        late_capture = False
        released = False

        with order_locks.hold(order_id):
            order = self.get_order(order_id)
            self._record_capture(order, succeeded, provider_reference, failure_reason)

            if succeeded:
                if order.payment_status == PaymentStatus.PENDING.value:
                    for reservation in order.reservations_in(ReservationState.HELD):
                        self.ledger.commit(_handle_for(order, reservation))
                    current_domain.process(
                        ConfirmOrderPayment(
                            order_id=order_id,
                            payment_id=order.payment_id,
                            provider_reference=provider_reference,
                        ),
                        asynchronous=False,
                    )
                    logger.info("Order confirmed", order_id=order_id, provider_reference=provider_reference)
                elif order.payment_status == PaymentStatus.FAILED.value:
                    late_capture = True
            else:
                if order.payment_status == PaymentStatus.PENDING.value:
                    reason = failure_reason or "Payment declined"
                    for reservation in order.reservations_in(ReservationState.HELD):
                        self.ledger.release(_handle_for(order, reservation), reason=reason)
                    current_domain.process(
                        FailOrderPayment(order_id=order_id, payment_id=order.payment_id, reason=reason),
                        asynchronous=False,
                    )
                    released = True
                    logger.warning("Order payment failed; reservations released", order_id=order_id, reason=reason)
                elif order.payment_status != PaymentStatus.FAILED.value:
                    raise InvalidStateTransition("payment_status", order.payment_status, PaymentStatus.FAILED.value)

        if succeeded and not late_capture and order.cart_id:
            self._destroy_cart(order.cart_id)
        if released and order.coupon_code:
            self.coupons.rollback(order.coupon_code, order_id)
        if late_capture:
            self._refund_late_capture(order)

        return self.get_order(order_id)

    def _record_capture(self, order, succeeded, provider_reference, failure_reason):
        if not order.payment_id:
            return
        with payment_locks.hold(str(order.payment_id)):
            current_domain.process(
                RecordCaptureOutcome(
                    payment_id=str(order.payment_id),
                    succeeded=succeeded,
                    provider_reference=provider_reference,
                    failure_reason=failure_reason,
                ),
                asynchronous=False,
            )

    def _refund_late_capture(self, order):
        payment = self._payments().get(str(order.payment_id))
        logger.error(
            "Capture succeeded for an order that is no longer payable; refunding",
            order_id=str(order.id),
            payment_id=str(payment.id),
            amount=payment.amount,
        )
        if payment.refundable_amount > 0:
            self.refunds.refund(
                payment.id,
                payment.refundable_amount,
                reason=RefundReason.DUPLICATE_CHARGE.value,
                update_order=False,
            )

    def _destroy_cart(self, cart_id):
        try:
            self.carts.destroy(cart_id, reason="checked_out")
        except ObjectNotFoundError:
            logger.debug("Cart already gone", cart_id=str(cart_id))

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel_order(self, order_id, reason="Cancelled by customer") -> Order:
        """Cancel an unshipped order.

        A paid order is refunded in full before it is cancelled. Held
        reservations are released; stock already committed for a paid order
        is put back on the shelf with an adjustment.
        """
        order_id = str(order_id)
        order = self.get_order(order_id)
        order.assert_cancellable()

        if order.payment_status == PaymentStatus.PAID.value:
            payment = self._payments().get(str(order.payment_id))
            self.refunds.refund(payment.id, payment.refundable_amount, reason=RefundReason.CUSTOMER_REQUEST.value)

        with order_locks.hold(order_id):
            order = self.get_order(order_id)
            order.assert_cancellable()
            committed = order.reservations_in(ReservationState.COMMITTED)
            for reservation in order.reservations_in(ReservationState.HELD):
                self.ledger.release(_handle_for(order, reservation), reason=reason)
            current_domain.process(CancelOrder(order_id=order_id, reason=reason), asynchronous=False)

        for reservation in committed:
            self.ledger.adjust(
                reservation.product_id,
                reservation.variant_id,
                reservation.warehouse_id,
                reservation.quantity,
                reason=f"Restocked after cancellation of {order.order_number}",
                reference_id=order_id,
            )
        if order.coupon_code:
            self.coupons.rollback(order.coupon_code, order_id)

        logger.info("Order cancelled", order_id=order_id, reason=reason)
        return self.get_order(order_id)

    # -------------------------------------------------------------------
    # Post-shipment lifecycle
    # -------------------------------------------------------------------
    def mark_delivered(self, order_id) -> Order:
        with order_locks.hold(str(order_id)):
            current_domain.process(MarkOrderDelivered(order_id=str(order_id)), asynchronous=False)
        return self.get_order(order_id)

    def mark_returned(self, order_id, reason=None) -> Order:
        with order_locks.hold(str(order_id)):
            current_domain.process(MarkOrderReturned(order_id=str(order_id), reason=reason), asynchronous=False)
        return self.get_order(order_id)

    def mark_disputed(self, order_id, reason=None) -> Order:
        with order_locks.hold(str(order_id)):
            current_domain.process(MarkOrderDisputed(order_id=str(order_id), reason=reason), asynchronous=False)
        logger.warning("Order disputed", order_id=str(order_id), reason=reason)
        return self.get_order(order_id)

    def refund_order(self, order_id, amount, reason=RefundReason.CUSTOMER_REQUEST.value):
        """Refund part of a paid order's capture."""
        order = self.get_order(order_id)
        if not order.payment_id:
            raise ValidationError({"payment": [f"Order {order_id} has no payment to refund"]})
        return self.refunds.refund(order.payment_id, as_float(to_money(amount)), reason=reason)
