"""Configurable fake payment gateway for development and testing.

Simulates a provider without external calls. Captures are idempotent by key
and remembered, so ``lookup`` can answer the reconciliation job exactly like
a real provider's "retrieve by idempotency key" endpoint would. A delay or a
``before_capture`` hook can hold a capture open to exercise timeouts and
interleavings.
"""

import threading
import time
from uuid import uuid4

from orderflow.gateway.port import FAILED, SUCCEEDED, PaymentGateway, PaymentResult, RefundResult


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.refunds_succeed: bool = True
        self.refund_failure_reason: str = "Refund rejected"
        self.capture_delay: float = 0.0
        self.before_capture = None
        self.calls: list[dict] = []
        self._captures: dict[str, PaymentResult] = {}
        self._in_flight: set[str] = set()
        self._settled = threading.Condition()

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str = "Card declined",
        capture_delay: float = 0.0,
        refunds_succeed: bool = True,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.capture_delay = capture_delay
        self.refunds_succeed = refunds_succeed

    def capture(
        self,
        order_id: str,
        amount: float,
        currency: str,
        idempotency_key: str,
    ) -> PaymentResult:
        self.calls.append(
            {
                "method": "capture",
                "order_id": order_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )

        with self._settled:
            self._settled.wait_for(lambda: idempotency_key not in self._in_flight)
            existing = self._captures.get(idempotency_key)
            if existing is not None:
                return existing
            self._in_flight.add(idempotency_key)

        try:
            result = self._charge(order_id, amount, idempotency_key)
            with self._settled:
                self._captures[idempotency_key] = result
        finally:
            with self._settled:
                self._in_flight.discard(idempotency_key)
                self._settled.notify_all()
        return result

    def _charge(self, order_id: str, amount: float, idempotency_key: str) -> PaymentResult:
        if self.before_capture is not None:
            self.before_capture(order_id=order_id, amount=amount, idempotency_key=idempotency_key)
        if self.capture_delay:
            time.sleep(self.capture_delay)

        if self.should_succeed:
            result = PaymentResult(
                succeeded=True,
                provider_reference=f"fake_txn_{uuid4().hex[:12]}",
                status=SUCCEEDED,
            )
        else:
            result = PaymentResult(
                succeeded=False,
                provider_reference=f"fake_txn_{uuid4().hex[:12]}",
                status=FAILED,
                failure_reason=self.failure_reason,
            )
        return result

    def refund(self, provider_reference: str, amount: float) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "provider_reference": provider_reference,
                "amount": amount,
            }
        )

        if self.refunds_succeed:
            return RefundResult(succeeded=True, provider_refund_id=f"fake_ref_{uuid4().hex[:12]}")
        return RefundResult(succeeded=False, failure_reason=self.refund_failure_reason)

    def lookup(self, idempotency_key: str) -> PaymentResult | None:
        self.calls.append({"method": "lookup", "idempotency_key": idempotency_key})
        with self._settled:
            return self._captures.get(idempotency_key)

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"

    # -------------------------------------------------------------------
    # Test support
    # -------------------------------------------------------------------
    def record_outcome(self, idempotency_key: str, succeeded: bool, failure_reason: str | None = None) -> PaymentResult:
        """Pretend the provider settled a capture out of band."""
        result = PaymentResult(
            succeeded=succeeded,
            provider_reference=f"fake_txn_{uuid4().hex[:12]}",
            status=SUCCEEDED if succeeded else FAILED,
            failure_reason=None if succeeded else (failure_reason or self.failure_reason),
        )
        with self._settled:
            self._captures[idempotency_key] = result
            self._settled.notify_all()
        return result

    def wait_for_capture(self, idempotency_key: str, timeout: float = 5.0) -> PaymentResult | None:
        with self._settled:
            self._settled.wait_for(lambda: idempotency_key in self._captures, timeout=timeout)
            return self._captures.get(idempotency_key)

    def calls_to(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]
