"""Payment gateway port (abstract interface).

The external processor captures and refunds money. This contract is all the
orchestrator knows about it; adapters translate it to a concrete provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

SUCCEEDED = "succeeded"
FAILED = "failed"


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a capture, as reported by the provider."""

    succeeded: bool
    provider_reference: str | None = None
    status: str = SUCCEEDED
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    succeeded: bool
    provider_refund_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def capture(
        self,
        order_id: str,
        amount: float,
        currency: str,
        idempotency_key: str,
    ) -> PaymentResult:
        """Capture funds. Repeating an idempotency key must not charge twice."""
        ...

    @abstractmethod
    def refund(self, provider_reference: str, amount: float) -> RefundResult:
        """Refund part or all of a previous capture."""
        ...

    @abstractmethod
    def lookup(self, idempotency_key: str) -> PaymentResult | None:
        """Return the recorded outcome of a capture, or None if the provider never saw it."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
