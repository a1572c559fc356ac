"""ShipmentTracker — books parcels with the carrier and follows them home.

Creating a shipment validates the requested quantities against the order
before the carrier is called, then records the fulfillment on the order and
the shipment itself under the order's lock. Carrier status updates advance
the order to Delivered once every parcel has arrived, or to Returned when
one comes back.
"""

import json
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderflow.carrier import get_carrier
from orderflow.order.fulfillment import RecordOrderFulfillment
from orderflow.order.lifecycle import MarkOrderDelivered, MarkOrderReturned
from orderflow.order.order import FulfillmentStatus, Order, OrderStatus
from orderflow.shipment.creation import CreateShipment
from orderflow.shipment.shipment import Shipment, ShipmentStatus
from orderflow.shipment.tracking import UpdateShipmentStatus
from orderflow.utils.locks import order_locks

logger = structlog.get_logger(__name__)


def _quantities(items) -> dict:
    """Fold ``[(order_item_id, qty)]`` or ``[{"order_item_id", "quantity"}]`` into one dict."""
    folded: dict = {}
    for item in items or []:
        if isinstance(item, dict):
            item_id, quantity = item["order_item_id"], item["quantity"]
        else:
            item_id, quantity = item
        if quantity is None or quantity < 1:
            raise ValidationError({"items": [f"Shipped quantity for item {item_id} must be positive"]})
        folded[str(item_id)] = folded.get(str(item_id), 0) + quantity
    return folded


def _status(value) -> ShipmentStatus:
    try:
        return ShipmentStatus(value)
    except ValueError:
        raise ValidationError({"status": [f"Unknown shipment status: {value}"]}) from None


class ShipmentTracker:
    def __init__(self, carrier=None):
        self._carrier = carrier

    @property
    def carrier(self):
        return self._carrier or get_carrier()

    def _repo(self):
        return current_domain.repository_for(Shipment)

    def get_shipment(self, shipment_id) -> Shipment:
        return self._repo().get(str(shipment_id))

    def shipments_for(self, order_id) -> list[Shipment]:
        return self._repo().find_for_order(order_id)

    def create_shipment(self, order_id, items, carrier, tracking_number=None) -> Shipment:
        """Ship ``items`` of a paid order.

        Raises ``OverShipment`` if any line would ship more than was ordered
        and ``InvalidStateTransition`` if the order is not ready to ship.
        Nothing is written when either is raised.
        """
        order_id = str(order_id)
        quantities = _quantities(items)
        current_domain.repository_for(Order).get(order_id).validate_fulfillment(quantities)

        if not tracking_number:
            booking = self.carrier.create_shipment(
                order_id,
                carrier,
                [{"order_item_id": k, "quantity": v} for k, v in quantities.items()],
            )
            if booking.error:
                logger.warning("Carrier booking failed", order_id=order_id, carrier=carrier, error=booking.error)
                raise ValidationError({"carrier": [f"Carrier booking failed: {booking.error}"]})
            tracking_number = booking.tracking_number

        shipment_id = str(uuid4())
        payload = json.dumps(quantities)
        with order_locks.hold(order_id):
            current_domain.process(
                RecordOrderFulfillment(order_id=order_id, shipment_id=shipment_id, quantities=payload),
                asynchronous=False,
            )
            current_domain.process(
                CreateShipment(
                    shipment_id=shipment_id,
                    order_id=order_id,
                    carrier=carrier,
                    tracking_number=tracking_number,
                    quantities=payload,
                ),
                asynchronous=False,
            )

        logger.info(
            "Shipment created",
            order_id=order_id,
            shipment_id=shipment_id,
            carrier=carrier,
            tracking_number=tracking_number,
            quantities=quantities,
        )
        return self.get_shipment(shipment_id)

    def update_status(self, shipment_id, status, location=None, description=None) -> Shipment:
        shipment = self.get_shipment(shipment_id)
        order_id = str(shipment.order_id)
        target = _status(status)

        with order_locks.hold(order_id):
            current_domain.process(
                UpdateShipmentStatus(
                    shipment_id=str(shipment.id),
                    status=target.value,
                    location=location,
                    description=description,
                ),
                asynchronous=False,
            )
            if target == ShipmentStatus.DELIVERED:
                self._deliver_order_if_complete(order_id)
            elif target == ShipmentStatus.RETURNED:
                order = current_domain.repository_for(Order).get(order_id)
                if order.status != OrderStatus.RETURNED.value:
                    current_domain.process(
                        MarkOrderReturned(order_id=order_id, reason=f"Shipment {shipment.id} returned"),
                        asynchronous=False,
                    )

        logger.info("Shipment status updated", shipment_id=str(shipment.id), order_id=order_id, status=target.value)
        return self.get_shipment(shipment.id)

    def ingest_carrier_update(self, tracking_number, status, location=None, description=None, payload="", signature=""):
        """Apply a carrier status callback identified by tracking number."""
        if not self.carrier.verify_webhook_signature(payload, signature):
            raise ValidationError({"signature": ["Invalid carrier webhook signature"]})
        shipment = self._repo().find_by_tracking_number(tracking_number)
        if shipment is None:
            raise ValidationError({"tracking_number": [f"No shipment with tracking number {tracking_number}"]})
        if shipment.status == _status(status).value and shipment.status != ShipmentStatus.IN_TRANSIT.value:
            logger.info("Duplicate carrier update ignored", tracking_number=tracking_number, status=status)
            return shipment
        return self.update_status(shipment.id, status, location=location, description=description)

    def _deliver_order_if_complete(self, order_id):
        order = current_domain.repository_for(Order).get(order_id)
        if order.fulfillment_status != FulfillmentStatus.FULFILLED.value:
            return
        if all(s.status == ShipmentStatus.DELIVERED.value for s in self.shipments_for(order_id)):
            current_domain.process(MarkOrderDelivered(order_id=order_id), asynchronous=False)
            logger.info("Order delivered", order_id=order_id)
