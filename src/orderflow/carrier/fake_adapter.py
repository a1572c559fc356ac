"""In-memory carrier used in development and tests.

Tracking numbers are sequential per carrier (``UPS-000001``), so tests can
predict them. A booking can be made to fail with ``configure``, and a
``signing_secret`` makes callbacks require a matching signature.
"""

import itertools
from collections import defaultdict
from datetime import timedelta

from orderflow.carrier.port import CarrierPort, CarrierShipment
from orderflow.shared.clock import utcnow


class FakeCarrier(CarrierPort):
    def __init__(self, transit_days: int = 5, signing_secret: str | None = None):
        self.transit_days = transit_days
        self.signing_secret = signing_secret
        self.rejection: str | None = None
        self.bookings: list[dict] = []
        self._sequences = defaultdict(lambda: itertools.count(1))

    def configure(self, should_succeed: bool = True, failure_reason: str = "Carrier unavailable"):
        self.rejection = None if should_succeed else failure_reason

    def create_shipment(self, order_id: str, carrier: str, items: list[dict]) -> CarrierShipment:
        self.bookings.append({"order_id": order_id, "carrier": carrier, "items": items})
        if self.rejection:
            return CarrierShipment(tracking_number=None, error=self.rejection)

        prefix = "".join(ch for ch in carrier.upper() if ch.isalnum()) or "PARCEL"
        number = next(self._sequences[prefix])
        return CarrierShipment(
            tracking_number=f"{prefix}-{number:06d}",
            estimated_delivery=(utcnow() + timedelta(days=self.transit_days)).date().isoformat(),
        )

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        if self.signing_secret is None:
            return True
        return signature == self.signing_secret
