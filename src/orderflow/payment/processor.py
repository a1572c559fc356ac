"""RefundProcessor — refunds a captured payment through the gateway.

The refund slot is reserved on the Payment under the payment lock, the
gateway is called with no lock held, and the answer is then settled under
the lock again. A refund that is still Pending when the gateway errors out
keeps its slot until a ``refund.*`` webhook settles it.
"""

import structlog
from protean.utils.globals import current_domain

from orderflow.errors import RefundDeclined
from orderflow.gateway import get_gateway
from orderflow.order.order import Order, PaymentStatus
from orderflow.order.refunds import RecordOrderRefund
from orderflow.payment.payment import Payment, RefundReason
from orderflow.payment.refund import RequestRefund, SettleRefund
from orderflow.shared.money import as_float, to_money
from orderflow.utils.locks import order_locks, payment_locks

logger = structlog.get_logger(__name__)

_REFUNDABLE_PAYMENT_STATES = {
    PaymentStatus.PAID.value,
    PaymentStatus.PARTIALLY_REFUNDED.value,
    PaymentStatus.REFUNDED.value,
}


class RefundProcessor:
    def __init__(self, gateway=None):
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or get_gateway()

    def _repo(self):
        return current_domain.repository_for(Payment)

    def refund(self, payment_id, amount, reason=RefundReason.CUSTOMER_REQUEST.value, update_order=True):
        """Refund ``amount`` of a succeeded payment and return the settled Refund.

        Raises ``OverRefund`` when the amount exceeds what is left to refund
        and ``RefundDeclined`` when the gateway rejects the refund. With
        ``update_order`` the owning order's payment status follows the new
        refunded total.
        """
        payment_id = str(payment_id)
        requested = to_money(amount)

        with payment_locks.hold(payment_id):
            refund_id = current_domain.process(
                RequestRefund(payment_id=payment_id, amount=as_float(requested), reason=reason),
                asynchronous=False,
            )
        payment = self._repo().get(payment_id)
        logger.info(
            "Refund requested",
            payment_id=payment_id,
            refund_id=refund_id,
            order_id=str(payment.order_id),
            amount=str(requested),
            reason=reason,
        )

        try:
            result = self.gateway.refund(payment.provider_reference, as_float(requested))
        except Exception:
            logger.error(
                "Refund outcome unknown; awaiting gateway webhook",
                payment_id=payment_id,
                refund_id=refund_id,
            )
            raise

        with payment_locks.hold(payment_id):
            current_domain.process(
                SettleRefund(
                    payment_id=payment_id,
                    refund_id=refund_id,
                    succeeded=result.succeeded,
                    provider_refund_id=result.provider_refund_id,
                    failure_reason=result.failure_reason,
                ),
                asynchronous=False,
            )

        if not result.succeeded:
            logger.warning(
                "Refund declined by gateway",
                payment_id=payment_id,
                refund_id=refund_id,
                reason=result.failure_reason,
            )
            raise RefundDeclined(payment_id, result.failure_reason)

        if update_order:
            self.sync_order(payment_id)

        payment = self._repo().get(payment_id)
        logger.info(
            "Refund succeeded",
            payment_id=payment_id,
            refund_id=refund_id,
            refunded_total=str(payment.refunded_total),
        )
        return payment.get_refund(refund_id)

    def sync_order(self, payment_id) -> None:
        """Bring the order's payment status in line with the payment's refunded total."""
        payment = self._repo().get(str(payment_id))
        order_id = str(payment.order_id)
        with order_locks.hold(order_id):
            # Re-read inside the lock so concurrent refunds never regress the status
            payment = self._repo().get(str(payment_id))
            order = current_domain.repository_for(Order).get(order_id)
            if order.payment_status not in _REFUNDABLE_PAYMENT_STATES:
                logger.warning(
                    "Refund not reflected on order",
                    order_id=order_id,
                    payment_id=str(payment.id),
                    payment_status=order.payment_status,
                )
                return
            current_domain.process(
                RecordOrderRefund(
                    order_id=order_id,
                    payment_id=str(payment.id),
                    refunded_total=as_float(payment.refunded_total),
                    payment_amount=payment.amount,
                ),
                asynchronous=False,
            )
