"""Shipment tracking — command and handler.

Applies carrier status updates to a shipment.
"""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.shipment.shipment import Shipment, ShipmentStatus


@orderflow.command(part_of="Shipment")
class UpdateShipmentStatus:
    shipment_id = Identifier(required=True)
    status = String(required=True, choices=ShipmentStatus)
    location = String(max_length=200)
    description = String(max_length=500)


@orderflow.command_handler(part_of=Shipment)
class TrackingHandler:
    @handle(UpdateShipmentStatus)
    def update_status(self, command):
        repo = current_domain.repository_for(Shipment)
        shipment = repo.get(command.shipment_id)
        shipment.update_status(command.status, location=command.location, description=command.description)
        repo.add(shipment)
