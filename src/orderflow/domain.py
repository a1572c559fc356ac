"""Orderflow — order fulfillment and inventory reservation.

Converts carts into orders, reserves stock across warehouses, captures
payment through an external gateway, tracks partial shipments, and unwinds
reservations and payments consistently on cancellation or refund.
"""

import structlog
from protean.domain import Domain

from orderflow.utils.logging import configure_logging

configure_logging()

logger = structlog.get_logger(__name__)

# Domain Composition Root
orderflow = Domain(name="orderflow")
