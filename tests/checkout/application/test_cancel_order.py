from decimal import Decimal

import pytest
from protean import current_domain

from orderflow.coupon.coupon import DiscountType
from orderflow.errors import AmbiguousPaymentOutcome, InvalidStateTransition
from orderflow.inventory.record import TransactionType
from orderflow.order.order import OrderStatus, PaymentStatus, ReservationState
from orderflow.payment.payment import Payment, RefundReason


class TestCancelPaidOrder:
    def test_refunds_in_full_and_restocks(self, checkout, orchestrator, ledger):
        order = checkout(quantity=2, unit_price=30.0, available=5)
        assert ledger.record("prod-001", "var-001", "wh-001").available == 3

        cancelled = orchestrator.cancel_order(order.id, reason="Ordered by mistake")

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.payment_status == PaymentStatus.REFUNDED.value
        assert cancelled.cancellation_reason == "Ordered by mistake"

        payment = current_domain.repository_for(Payment).get(order.payment_id)
        assert payment.refunded_total == Decimal("60.00")
        assert payment.refunds[0].reason == RefundReason.CUSTOMER_REQUEST.value

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 5
        assert record.reserved == 0
        restock = record.ordered_transactions()[-1]
        assert restock.transaction_type == TransactionType.ADJUST.value
        assert restock.reference_id == str(order.id)
        assert ledger.reconcile("prod-001", "var-001", "wh-001").consistent

    def test_coupon_usage_is_given_back(self, orchestrator, stock, cart_with, coupons):
        coupons.create_coupon(
            code="WELCOME",
            name="Welcome",
            discount_type=DiscountType.FIXED_AMOUNT.value,
            discount_value=5.0,
            usage_limit=1,
        )
        stock(1)
        cart = cart_with({"product_id": "prod-001", "variant_id": "var-001", "quantity": 1, "unit_price": 50.0})
        order = orchestrator.place_order(str(cart.id), coupon_code="WELCOME")
        assert coupons.get("WELCOME").usage_count == 1

        orchestrator.cancel_order(order.id)

        assert coupons.get("WELCOME").usage_count == 0

    def test_cannot_cancel_after_shipping(self, checkout, orchestrator, tracker):
        order = checkout(quantity=2)
        tracker.create_shipment(order.id, [(str(order.items[0].id), 1)], carrier="UPS")

        with pytest.raises(InvalidStateTransition):
            orchestrator.cancel_order(order.id)

    def test_cannot_cancel_twice(self, checkout, orchestrator):
        order = checkout()
        orchestrator.cancel_order(order.id)

        with pytest.raises(InvalidStateTransition):
            orchestrator.cancel_order(order.id)

    def test_partially_refunded_order_cannot_be_cancelled(self, checkout, orchestrator):
        order = checkout(quantity=1, unit_price=100.0)
        orchestrator.refund_order(order.id, 10)

        with pytest.raises(InvalidStateTransition):
            orchestrator.cancel_order(order.id)


class TestCancelPendingOrder:
    @pytest.fixture()
    def pending_order(self, checkout, gateway, monkeypatch, orchestrator):
        def fail(*args, **kwargs):
            raise ConnectionError("gateway unreachable")

        monkeypatch.setattr(gateway, "capture", fail)
        with pytest.raises(AmbiguousPaymentOutcome) as exc:
            checkout(quantity=2, unit_price=10.0, available=4, idempotency_key="checkout-cancel")
        return orchestrator.get_order(exc.value.order_id)

    def test_releases_held_stock(self, pending_order, orchestrator, ledger):
        cancelled = orchestrator.cancel_order(pending_order.id)

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.payment_status == PaymentStatus.FAILED.value
        assert [r.state for r in cancelled.reservations] == [ReservationState.RELEASED.value]

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 4
        assert record.reserved == 0

    def test_capture_landing_after_cancel_is_refunded(self, pending_order, orchestrator, gateway):
        orchestrator.cancel_order(pending_order.id)

        result = gateway.record_outcome("checkout-cancel", succeeded=True)
        order = orchestrator.resolve_payment(pending_order.id, succeeded=True, provider_reference=result.provider_reference)

        assert order.status == OrderStatus.CANCELLED.value
        payment = current_domain.repository_for(Payment).get(order.payment_id)
        assert payment.refunded_total == Decimal("20.00")
        assert payment.refunds[0].reason == RefundReason.DUPLICATE_CHARGE.value
