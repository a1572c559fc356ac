"""PaymentReconciler — settles checkouts whose capture outcome is unknown.

Runs as a periodic job (``manage.py reconcile``). For every order still
waiting on a capture it asks the gateway what happened to the idempotency
key and applies the answer through the orchestrator:

    gateway says succeeded            -> commit stock, confirm order
    gateway says failed               -> release stock, cancel order
    gateway never saw it, too old     -> release stock, cancel order (abandoned)
    gateway never saw it, still young -> leave pending; the capture may be in flight
"""

from dataclasses import dataclass, field
from datetime import timedelta

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from orderflow import config
from orderflow.gateway import get_gateway
from orderflow.order.order import Order
from orderflow.shared.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)

ABANDONED_REASON = "Payment outcome unknown to gateway; checkout abandoned"


@dataclass
class ReconciliationReport:
    confirmed: list = field(default_factory=list)
    cancelled: list = field(default_factory=list)
    abandoned: list = field(default_factory=list)
    still_pending: list = field(default_factory=list)
    errors: dict = field(default_factory=dict)

    @property
    def examined(self) -> int:
        return (
            len(self.confirmed)
            + len(self.cancelled)
            + len(self.abandoned)
            + len(self.still_pending)
            + len(self.errors)
        )


class PaymentReconciler:
    def __init__(self, orchestrator, gateway=None, max_age_minutes=None):
        self.orchestrator = orchestrator
        self._gateway = gateway
        self.max_age_minutes = max_age_minutes

    @property
    def gateway(self):
        return self._gateway or get_gateway()

    def reconcile(self, now=None) -> ReconciliationReport:
        now = now or utcnow()
        max_age = self.max_age_minutes if self.max_age_minutes is not None else config.reconciliation_max_age_minutes()
        cutoff = now - timedelta(minutes=max_age)

        report = ReconciliationReport()
        pending = current_domain.repository_for(Order).find_pending_capture()
        for order in pending:
            order_id = str(order.id)
            try:
                result = self.gateway.lookup(order.idempotency_key) if order.idempotency_key else None
                if result is None:
                    placed_at = as_utc(order.placed_at)
                    if placed_at is not None and placed_at <= cutoff:
                        self.orchestrator.resolve_payment(order_id, succeeded=False, failure_reason=ABANDONED_REASON)
                        report.abandoned.append(order_id)
                    else:
                        report.still_pending.append(order_id)
                elif result.succeeded:
                    self.orchestrator.resolve_payment(
                        order_id,
                        succeeded=True,
                        provider_reference=result.provider_reference,
                    )
                    report.confirmed.append(order_id)
                else:
                    self.orchestrator.resolve_payment(
                        order_id,
                        succeeded=False,
                        provider_reference=result.provider_reference,
                        failure_reason=result.failure_reason,
                    )
                    report.cancelled.append(order_id)
            except (ValidationError, InvalidOperationError, ObjectNotFoundError) as exc:
                logger.warning("Failed to reconcile order", order_id=order_id, error=str(exc))
                report.errors[order_id] = str(exc)

        logger.info(
            "Payment reconciliation finished",
            examined=report.examined,
            confirmed=len(report.confirmed),
            cancelled=len(report.cancelled),
            abandoned=len(report.abandoned),
            still_pending=len(report.still_pending),
        )
        return report
