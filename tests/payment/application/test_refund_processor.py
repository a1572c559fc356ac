"""Application tests for RefundProcessor against a captured checkout."""

from decimal import Decimal

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from orderflow.errors import OverRefund, RefundDeclined
from orderflow.order.order import Order, PaymentStatus
from orderflow.payment.payment import Payment, RefundReason, RefundStatus
from orderflow.payment.processor import RefundProcessor


@pytest.fixture()
def paid_order(checkout):
    return checkout(quantity=1, unit_price=100.0)


@pytest.fixture()
def processor(gateway):
    return RefundProcessor(gateway=gateway)


def _payment(order):
    return current_domain.repository_for(Payment).get(order.payment_id)


def _order(order):
    return current_domain.repository_for(Order).get(order.id)


class TestRefundCeiling:
    def test_thirty_then_eighty_rejects_the_second(self, paid_order, processor):
        processor.refund(paid_order.payment_id, 30)

        with pytest.raises(OverRefund):
            processor.refund(paid_order.payment_id, 80)

        payment = _payment(paid_order)
        assert payment.refunded_total == Decimal("30.00")
        assert _order(paid_order).payment_status == PaymentStatus.PARTIALLY_REFUNDED.value

    def test_thirty_then_seventy_marks_order_refunded(self, paid_order, processor):
        processor.refund(paid_order.payment_id, 30)
        refund = processor.refund(paid_order.payment_id, 70)

        assert refund.status == RefundStatus.SUCCEEDED.value
        assert refund.provider_refund_id.startswith("fake_ref_")
        assert _payment(paid_order).refunded_total == Decimal("100.00")
        assert _order(paid_order).payment_status == PaymentStatus.REFUNDED.value

    def test_refund_goes_to_the_captured_transaction(self, paid_order, processor, gateway):
        processor.refund(paid_order.payment_id, 10, reason=RefundReason.DEFECTIVE_PRODUCT.value)

        calls = gateway.calls_to("refund")
        assert len(calls) == 1
        assert calls[0]["provider_reference"] == _payment(paid_order).provider_reference
        assert calls[0]["amount"] == 10.0


class TestGatewayFailures:
    def test_declined_refund_frees_the_slot(self, paid_order, processor, gateway):
        gateway.refunds_succeed = False

        with pytest.raises(RefundDeclined):
            processor.refund(paid_order.payment_id, 100)

        payment = _payment(paid_order)
        assert payment.refunds[0].status == RefundStatus.FAILED.value
        assert payment.refundable_amount == Decimal("100.00")
        assert _order(paid_order).payment_status == PaymentStatus.PAID.value

        gateway.refunds_succeed = True
        processor.refund(paid_order.payment_id, 100)
        assert _order(paid_order).payment_status == PaymentStatus.REFUNDED.value

    def test_gateway_error_leaves_refund_pending(self, paid_order, processor, gateway, monkeypatch):
        def unreachable(provider_reference, amount):
            raise ConnectionError("gateway unreachable")

        monkeypatch.setattr(gateway, "refund", unreachable)

        with pytest.raises(ConnectionError):
            processor.refund(paid_order.payment_id, 40)

        payment = _payment(paid_order)
        assert payment.refunds[0].status == RefundStatus.PENDING.value
        assert payment.refundable_amount == Decimal("60.00")
        with pytest.raises(OverRefund):
            processor.refund(paid_order.payment_id, 70)

    def test_invalid_reason_rejected(self, paid_order, processor):
        with pytest.raises(ValidationError):
            processor.refund(paid_order.payment_id, 10, reason="because")
