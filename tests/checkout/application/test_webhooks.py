"""Application tests for gateway webhook ingestion: verification, routing and exactly-once effects."""

from decimal import Decimal

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from orderflow.checkout.webhooks import (
    CHARGE_DISPUTED,
    DUPLICATE,
    IGNORED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    PROCESSED,
    REFUND_SUCCEEDED,
    WebhookIngestor,
)
from orderflow.errors import AmbiguousPaymentOutcome, InvalidWebhookSignature
from orderflow.order.order import OrderStatus, PaymentStatus
from orderflow.payment.payment import Payment, RefundStatus

SIGNATURE = "test-signature"


@pytest.fixture()
def ingestor(orchestrator, gateway):
    return WebhookIngestor(orchestrator, gateway=gateway)


@pytest.fixture()
def pending_order(checkout, gateway, monkeypatch, orchestrator):
    """A checkout whose capture never answered; the gateway settles it later."""

    def fail(*args, **kwargs):
        raise ConnectionError("gateway unreachable")

    monkeypatch.setattr(gateway, "capture", fail)
    with pytest.raises(AmbiguousPaymentOutcome) as exc:
        checkout(quantity=1, unit_price=80.0, available=3, idempotency_key="checkout-webhook")
    return orchestrator.get_order(exc.value.order_id)


def _payment(order):
    return current_domain.repository_for(Payment).get(order.payment_id)


class TestVerification:
    def test_bad_signature_rejected(self, ingestor, pending_order):
        with pytest.raises(InvalidWebhookSignature):
            ingestor.ingest(PAYMENT_SUCCEEDED, "txn-001", {"idempotency_key": "checkout-webhook"}, signature="forged")
        assert pending_order.is_pending_capture

    def test_unsupported_event_type(self, ingestor):
        with pytest.raises(ValidationError):
            ingestor.ingest("customer.created", "txn-001", {}, signature=SIGNATURE)

    def test_unknown_payment_is_ignored(self, ingestor):
        assert ingestor.ingest(PAYMENT_SUCCEEDED, "txn-404", {}, signature=SIGNATURE) == IGNORED


class TestPaymentEvents:
    def test_success_confirms_pending_order(self, ingestor, pending_order, orchestrator, ledger):
        outcome = ingestor.ingest(
            PAYMENT_SUCCEEDED, "txn-001", {"idempotency_key": "checkout-webhook"}, signature=SIGNATURE
        )

        assert outcome == PROCESSED
        order = orchestrator.get_order(pending_order.id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.provider_reference == "txn-001"
        assert ledger.record("prod-001", "var-001", "wh-001").available == 2

    def test_redelivery_is_a_duplicate(self, ingestor, pending_order, ledger):
        payload = {"idempotency_key": "checkout-webhook"}
        ingestor.ingest(PAYMENT_SUCCEEDED, "txn-001", payload, signature=SIGNATURE)

        assert ingestor.ingest(PAYMENT_SUCCEEDED, "txn-001", payload, signature=SIGNATURE) == DUPLICATE
        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 2
        assert len(record.reservations) == 1

    def test_failure_cancels_pending_order(self, ingestor, pending_order, orchestrator, ledger):
        outcome = ingestor.ingest(
            PAYMENT_FAILED,
            "txn-001",
            {"idempotency_key": "checkout-webhook", "failure_reason": "Insufficient funds"},
            signature=SIGNATURE,
        )

        assert outcome == PROCESSED
        order = orchestrator.get_order(pending_order.id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason == "Insufficient funds"
        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 3
        assert record.reserved == 0

    def test_failure_after_success_is_rejected(self, ingestor, pending_order, orchestrator):
        payload = {"idempotency_key": "checkout-webhook"}
        ingestor.ingest(PAYMENT_SUCCEEDED, "txn-001", payload, signature=SIGNATURE)

        with pytest.raises(ValidationError):
            ingestor.ingest(PAYMENT_FAILED, "txn-001", payload, signature=SIGNATURE)
        assert orchestrator.get_order(pending_order.id).payment_status == PaymentStatus.PAID.value


class TestRefundAndDisputeEvents:
    @pytest.fixture()
    def paid_order(self, ingestor, pending_order, orchestrator):
        ingestor.ingest(PAYMENT_SUCCEEDED, "txn-001", {"idempotency_key": "checkout-webhook"}, signature=SIGNATURE)
        return orchestrator.get_order(pending_order.id)

    def test_refund_webhook_settles_pending_refund(self, ingestor, paid_order, orchestrator, gateway, monkeypatch):
        def lost(provider_reference, amount):
            raise TimeoutError("no answer")

        monkeypatch.setattr(gateway, "refund", lost)
        with pytest.raises(TimeoutError):
            orchestrator.refund_order(paid_order.id, 20)

        refund = _payment(paid_order).refunds[0]
        assert refund.status == RefundStatus.PENDING.value

        outcome = ingestor.ingest(
            REFUND_SUCCEEDED,
            "txn-001",
            {"refund_id": str(refund.id), "provider_refund_id": "re_001"},
            signature=SIGNATURE,
        )

        assert outcome == PROCESSED
        payment = _payment(paid_order)
        assert payment.refunded_total == Decimal("20.00")
        assert payment.refunds[0].provider_refund_id == "re_001"
        assert orchestrator.get_order(paid_order.id).payment_status == PaymentStatus.PARTIALLY_REFUNDED.value

    def test_dispute_marks_order(self, ingestor, paid_order, orchestrator):
        outcome = ingestor.ingest(CHARGE_DISPUTED, "txn-001", {"reason": "Fraudulent"}, signature=SIGNATURE)

        assert outcome == PROCESSED
        assert orchestrator.get_order(paid_order.id).status == OrderStatus.DISPUTED.value
        assert ingestor.ingest(CHARGE_DISPUTED, "txn-001", {"reason": "Fraudulent"}, signature=SIGNATURE) == DUPLICATE

    def test_each_refund_gets_its_own_receipt(self, ingestor, paid_order, orchestrator, gateway, monkeypatch):
        def lost(provider_reference, amount):
            raise TimeoutError("no answer")

        monkeypatch.setattr(gateway, "refund", lost)
        for amount in (10, 15):
            with pytest.raises(TimeoutError):
                orchestrator.refund_order(paid_order.id, amount)

        for refund in _payment(paid_order).refunds:
            outcome = ingestor.ingest(REFUND_SUCCEEDED, "txn-001", {"refund_id": str(refund.id)}, signature=SIGNATURE)
            assert outcome == PROCESSED

        assert _payment(paid_order).refunded_total == Decimal("25.00")
