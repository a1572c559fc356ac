"""Domain tests for the Payment aggregate: capture outcome, refund ceiling and webhook receipts."""

from decimal import Decimal

import pytest
from protean.exceptions import ValidationError

from orderflow.errors import InvalidStateTransition, OverRefund
from orderflow.payment.events import PaymentFailed, PaymentSucceeded, RefundRequested, RefundSucceeded
from orderflow.payment.payment import Payment, PaymentAttemptStatus, RefundReason, RefundStatus


def _payment(amount=100.0):
    return Payment.initiate(order_id="ord-001", amount=amount, currency="USD", idempotency_key="key-001")


def _captured(amount=100.0):
    payment = _payment(amount)
    payment.mark_succeeded(provider_reference="txn-001")
    return payment


def _refund(payment, amount, reason=RefundReason.CUSTOMER_REQUEST.value):
    refund = payment.request_refund(amount, reason)
    payment.complete_refund(refund.id, provider_refund_id=f"ref-{amount}")
    return refund


class TestCaptureOutcome:
    def test_initiated_payment_is_pending(self):
        payment = _payment()
        assert payment.status == PaymentAttemptStatus.PENDING.value
        assert payment.amount == 100.0

    def test_mark_succeeded(self):
        payment = _payment()
        assert payment.mark_succeeded(provider_reference="txn-001") is True
        assert payment.status == PaymentAttemptStatus.SUCCEEDED.value
        assert payment.provider_reference == "txn-001"
        assert any(isinstance(e, PaymentSucceeded) for e in payment._events)

    def test_mark_succeeded_twice(self):
        payment = _captured()
        assert payment.mark_succeeded(provider_reference="txn-001") is False

    def test_mark_failed(self):
        payment = _payment()
        assert payment.mark_failed("Card declined") is True
        assert payment.status == PaymentAttemptStatus.FAILED.value
        assert payment.failure_reason == "Card declined"
        assert any(isinstance(e, PaymentFailed) for e in payment._events)

    def test_cannot_fail_a_succeeded_payment(self):
        payment = _captured()
        with pytest.raises(InvalidStateTransition):
            payment.mark_failed("Card declined")

    def test_late_success_overrides_local_failure(self):
        payment = _payment()
        payment.mark_failed("Checkout abandoned")
        assert payment.mark_succeeded(provider_reference="txn-late") is True
        assert payment.status == PaymentAttemptStatus.SUCCEEDED.value


class TestRefunds:
    def test_refund_requires_captured_payment(self):
        payment = _payment()
        with pytest.raises(InvalidStateTransition):
            payment.request_refund(10, RefundReason.CUSTOMER_REQUEST.value)

    def test_pending_refund_counts_against_ceiling(self):
        payment = _captured()
        refund = payment.request_refund(60, RefundReason.CUSTOMER_REQUEST.value)

        assert refund.status == RefundStatus.PENDING.value
        assert payment.refunded_total == Decimal("0.00")
        assert payment.refundable_amount == Decimal("40.00")
        assert any(isinstance(e, RefundRequested) for e in payment._events)

    def test_thirty_then_eighty_is_rejected(self):
        payment = _captured(100.0)
        _refund(payment, 30)

        with pytest.raises(OverRefund) as exc:
            payment.request_refund(80, RefundReason.CUSTOMER_REQUEST.value)

        assert exc.value.refundable == Decimal("70.00")
        assert payment.refunded_total == Decimal("30.00")
        assert len(payment.refunds) == 1

    def test_thirty_then_seventy_refunds_everything(self):
        payment = _captured(100.0)
        _refund(payment, 30)
        _refund(payment, 70)

        assert payment.refunded_total == Decimal("100.00")
        assert payment.refundable_amount == Decimal("0.00")
        assert len([e for e in payment._events if isinstance(e, RefundSucceeded)]) == 2

    def test_failed_refund_frees_the_slot(self):
        payment = _captured(100.0)
        refund = payment.request_refund(100, RefundReason.CUSTOMER_REQUEST.value)
        payment.fail_refund(refund.id, "Rejected")

        assert payment.refundable_amount == Decimal("100.00")
        _refund(payment, 100)
        assert payment.refunded_total == Decimal("100.00")

    def test_settling_twice_is_a_no_op(self):
        payment = _captured()
        refund = payment.request_refund(10, RefundReason.CUSTOMER_REQUEST.value)
        assert payment.complete_refund(refund.id) is True
        assert payment.complete_refund(refund.id) is False

    def test_cannot_fail_a_completed_refund(self):
        payment = _captured()
        refund = _refund(payment, 10)
        with pytest.raises(InvalidStateTransition):
            payment.fail_refund(refund.id, "Too late")

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, amount):
        payment = _captured()
        with pytest.raises(ValidationError):
            payment.request_refund(amount, RefundReason.CUSTOMER_REQUEST.value)

    def test_unknown_refund(self):
        payment = _captured()
        with pytest.raises(ValidationError):
            payment.get_refund("missing")


class TestWebhookReceipts:
    def test_record_once(self):
        payment = _captured()
        assert payment.record_webhook("payment.succeeded", "txn-001") is True
        assert payment.record_webhook("payment.succeeded", "txn-001") is False
        assert payment.has_processed("payment.succeeded", "txn-001")

    def test_receipts_are_keyed_by_event_type(self):
        payment = _captured()
        payment.record_webhook("payment.succeeded", "txn-001")
        assert not payment.has_processed("charge.disputed", "txn-001")
