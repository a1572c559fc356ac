"""Shipment aggregate (CQRS) — one parcel covering part of an order.

State Machine:
    PENDING -> SHIPPED -> IN_TRANSIT -> OUT_FOR_DELIVERY -> DELIVERED
    IN_TRANSIT -> IN_TRANSIT (carrier scans along the route)
    {SHIPPED, IN_TRANSIT, OUT_FOR_DELIVERY} -> FAILED_DELIVERY -> {IN_TRANSIT, OUT_FOR_DELIVERY, DELIVERED, RETURNED}

There is no cancelled state: a shipment's quantities count as fulfilled on
the order from the moment it is created.

Nothing is overwritten: every change appends a ShipmentStatusEntry, so the
carrier timeline can be read back in order.
"""

import json
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from orderflow.domain import orderflow
from orderflow.errors import InvalidStateTransition
from orderflow.shipment.events import ShipmentCreated, ShipmentDelivered, ShipmentStatusChanged
from orderflow.shared.clock import utcnow


class ShipmentStatus(Enum):
    PENDING = "Pending"
    SHIPPED = "Shipped"
    IN_TRANSIT = "In_Transit"
    OUT_FOR_DELIVERY = "Out_For_Delivery"
    DELIVERED = "Delivered"
    FAILED_DELIVERY = "Failed_Delivery"
    RETURNED = "Returned"


_VALID_TRANSITIONS = {
    ShipmentStatus.PENDING: {ShipmentStatus.SHIPPED},
    ShipmentStatus.SHIPPED: {
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.DELIVERED,
        ShipmentStatus.FAILED_DELIVERY,
        ShipmentStatus.RETURNED,
    },
    ShipmentStatus.IN_TRANSIT: {
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.DELIVERED,
        ShipmentStatus.FAILED_DELIVERY,
        ShipmentStatus.RETURNED,
    },
    ShipmentStatus.OUT_FOR_DELIVERY: {
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.DELIVERED,
        ShipmentStatus.FAILED_DELIVERY,
    },
    ShipmentStatus.FAILED_DELIVERY: {
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.DELIVERED,
        ShipmentStatus.RETURNED,
    },
    ShipmentStatus.DELIVERED: {ShipmentStatus.RETURNED},
    ShipmentStatus.RETURNED: set(),  # terminal
}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="Shipment")
class ShipmentItem:
    order_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity_shipped = Integer(required=True, min_value=1)


@orderflow.entity(part_of="Shipment")
class ShipmentStatusEntry:
    sequence = Integer(required=True, min_value=1)
    from_status = String(max_length=50)
    to_status = String(required=True, max_length=50)
    location = String(max_length=200)
    description = String(max_length=500)
    occurred_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@orderflow.aggregate
class Shipment:
    order_id = Identifier(required=True)
    carrier = String(required=True, max_length=100)
    tracking_number = String(max_length=255)
    status = String(choices=ShipmentStatus, default=ShipmentStatus.PENDING.value)
    items = HasMany(ShipmentItem)
    status_history = HasMany(ShipmentStatusEntry)
    created_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()

    @classmethod
    def create(cls, shipment_id, order_id, carrier, tracking_number, items_data):
        if not items_data:
            raise ValidationError({"items": ["A shipment must contain at least one item"]})

        now = utcnow()
        shipment = cls(
            id=shipment_id,
            order_id=order_id,
            carrier=carrier,
            tracking_number=tracking_number,
            status=ShipmentStatus.PENDING.value,
            created_at=now,
        )
        for item in items_data:
            shipment.add_items(ShipmentItem(**item))
        shipment.add_status_history(
            ShipmentStatusEntry(
                sequence=1,
                from_status=None,
                to_status=ShipmentStatus.PENDING.value,
                description="Shipment created",
                occurred_at=now,
            )
        )
        shipment.raise_(
            ShipmentCreated(
                shipment_id=str(shipment.id),
                order_id=str(order_id),
                carrier=carrier,
                tracking_number=tracking_number,
                items=json.dumps(
                    [
                        {"order_item_id": str(i["order_item_id"]), "quantity_shipped": i["quantity_shipped"]}
                        for i in items_data
                    ]
                ),
                created_at=now,
            )
        )
        return shipment

    def ordered_history(self):
        return sorted(self.status_history, key=lambda e: e.sequence)

    def can_transition(self, target) -> bool:
        return target in _VALID_TRANSITIONS[ShipmentStatus(self.status)]

    def update_status(self, new_status, location=None, description=None):
        target = ShipmentStatus(new_status)
        current = ShipmentStatus(self.status)
        if not self.can_transition(target):
            raise InvalidStateTransition("shipment_status", current.value, target.value)

        now = utcnow()
        self.status = target.value
        if target == ShipmentStatus.SHIPPED:
            self.shipped_at = now
        elif target == ShipmentStatus.DELIVERED:
            self.delivered_at = now

        entry = ShipmentStatusEntry(
            sequence=len(self.status_history) + 1,
            from_status=current.value,
            to_status=target.value,
            location=location,
            description=description,
            occurred_at=now,
        )
        self.add_status_history(entry)
        self.raise_(
            ShipmentStatusChanged(
                shipment_id=str(self.id),
                order_id=str(self.order_id),
                from_status=current.value,
                to_status=target.value,
                sequence=entry.sequence,
                location=location,
                description=description,
                changed_at=now,
            )
        )
        if target == ShipmentStatus.DELIVERED:
            self.raise_(ShipmentDelivered(shipment_id=str(self.id), order_id=str(self.order_id), delivered_at=now))
