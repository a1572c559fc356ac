"""Carrier port — abstract interface for shipping carrier integrations.

The tracker programs against this port; adapters are swapped via the
CARRIER_ADAPTER environment variable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CarrierShipment:
    """What the carrier hands back when a parcel is booked."""

    tracking_number: str | None
    estimated_delivery: str | None = None
    error: str | None = None


class CarrierPort(ABC):
    """Abstract interface for carrier adapters."""

    @abstractmethod
    def create_shipment(self, order_id: str, carrier: str, items: list[dict]) -> CarrierShipment:
        """Book a shipment and obtain its tracking number."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a status callback is authentic."""
        ...
