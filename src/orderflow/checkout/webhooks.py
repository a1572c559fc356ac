"""WebhookIngestor — applies gateway notifications exactly once.

Delivery is at-least-once, so every notification is deduplicated by
``(provider_reference, event_type)`` against the receipts kept on the
Payment. A receipt is written only after the notification has been applied;
a failure part way through leaves it unrecorded so the redelivery retries.
"""

import json

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderflow.errors import InvalidWebhookSignature
from orderflow.payment.payment import Payment, RefundStatus
from orderflow.payment.refund import SettleRefund
from orderflow.payment.webhook import RecordWebhookReceipt
from orderflow.utils.locks import payment_locks

logger = structlog.get_logger(__name__)

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"
REFUND_SUCCEEDED = "refund.succeeded"
REFUND_FAILED = "refund.failed"
CHARGE_DISPUTED = "charge.disputed"

SUPPORTED_EVENTS = (PAYMENT_SUCCEEDED, PAYMENT_FAILED, REFUND_SUCCEEDED, REFUND_FAILED, CHARGE_DISPUTED)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"


def _receipt_reference(event_type, provider_reference, data):
    """Refund notifications share the capture's reference, so each refund gets its own receipt."""
    if event_type in (REFUND_SUCCEEDED, REFUND_FAILED):
        refund_ref = data.get("refund_id") or data.get("provider_refund_id")
        if refund_ref:
            return f"{provider_reference}:{refund_ref}"
    return provider_reference


class WebhookIngestor:
    def __init__(self, orchestrator, gateway=None):
        self.orchestrator = orchestrator
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or self.orchestrator.gateway

    def _repo(self):
        return current_domain.repository_for(Payment)

    def ingest(self, event_type, provider_reference, payload=None, signature=None) -> str:
        """Verify, deduplicate and apply one notification.

        Returns ``"processed"``, ``"duplicate"`` for a redelivery, or
        ``"ignored"`` when no payment matches the notification.
        """
        raw = payload if isinstance(payload, str) else json.dumps(payload or {}, sort_keys=True)
        if not self.gateway.verify_webhook_signature(raw, signature):
            logger.warning("Webhook signature rejected", event_type=event_type, provider_reference=provider_reference)
            raise InvalidWebhookSignature()
        if event_type not in SUPPORTED_EVENTS:
            raise ValidationError({"event_type": [f"Unsupported webhook event type: {event_type}"]})

        data = json.loads(raw) if raw else {}
        payment = self._find_payment(provider_reference, data)
        if payment is None:
            logger.warning(
                "Webhook for unknown payment ignored",
                event_type=event_type,
                provider_reference=provider_reference,
            )
            return IGNORED

        receipt_reference = _receipt_reference(event_type, provider_reference, data)
        if payment.has_processed(event_type, receipt_reference):
            logger.info(
                "Duplicate webhook ignored",
                event_type=event_type,
                provider_reference=provider_reference,
                payment_id=str(payment.id),
            )
            return DUPLICATE

        if event_type == PAYMENT_SUCCEEDED:
            self.orchestrator.resolve_payment(payment.order_id, succeeded=True, provider_reference=provider_reference)
        elif event_type == PAYMENT_FAILED:
            self.orchestrator.resolve_payment(
                payment.order_id,
                succeeded=False,
                provider_reference=provider_reference,
                failure_reason=data.get("failure_reason") or "Payment failed",
            )
        elif event_type in (REFUND_SUCCEEDED, REFUND_FAILED):
            self._settle_refund(payment, event_type, data)
        else:
            self.orchestrator.mark_disputed(payment.order_id, reason=data.get("reason") or "Charge disputed")

        with payment_locks.hold(str(payment.id)):
            current_domain.process(
                RecordWebhookReceipt(
                    payment_id=str(payment.id),
                    event_type=event_type,
                    provider_reference=receipt_reference,
                ),
                asynchronous=False,
            )
        logger.info(
            "Webhook processed",
            event_type=event_type,
            provider_reference=provider_reference,
            payment_id=str(payment.id),
        )
        return PROCESSED

    def _find_payment(self, provider_reference, data):
        repo = self._repo()
        payment = repo.find_by_provider_reference(provider_reference)
        if payment is None and data.get("idempotency_key"):
            payment = repo.find_by_idempotency_key(data["idempotency_key"])
        if payment is None and data.get("payment_id"):
            payment = repo.get(data["payment_id"])
        return payment

    def _settle_refund(self, payment, event_type, data):
        refund_id = data.get("refund_id")
        if not refund_id:
            pending = [r for r in payment.refunds if r.status == RefundStatus.PENDING.value]
            if len(pending) != 1:
                raise ValidationError({"refund_id": ["Webhook does not identify a single pending refund"]})
            refund_id = str(pending[0].id)

        succeeded = event_type == REFUND_SUCCEEDED
        with payment_locks.hold(str(payment.id)):
            changed = current_domain.process(
                SettleRefund(
                    payment_id=str(payment.id),
                    refund_id=refund_id,
                    succeeded=succeeded,
                    provider_refund_id=data.get("provider_refund_id"),
                    failure_reason=data.get("failure_reason"),
                ),
                asynchronous=False,
            )
        if changed and succeeded:
            self.orchestrator.refunds.sync_order(payment.id)
