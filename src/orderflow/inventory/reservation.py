"""Stock reservation — reserve, commit and release commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.inventory.record import InventoryRecord


@orderflow.command(part_of="InventoryRecord")
class ReserveStock:
    inventory_record_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@orderflow.command(part_of="InventoryRecord")
class CommitReservation:
    """Deduct reserved stock once payment has been captured."""

    inventory_record_id = Identifier(required=True)
    reservation_id = Identifier(required=True)


@orderflow.command(part_of="InventoryRecord")
class ReleaseReservation:
    inventory_record_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    reason = String(max_length=500)


@orderflow.command_handler(part_of=InventoryRecord)
class ReservationHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        repo = current_domain.repository_for(InventoryRecord)
        record = repo.get(command.inventory_record_id)
        reservation = record.reserve(order_id=command.order_id, quantity=command.quantity)
        repo.add(record)
        return str(reservation.id)

    @handle(CommitReservation)
    def commit_reservation(self, command):
        repo = current_domain.repository_for(InventoryRecord)
        record = repo.get(command.inventory_record_id)
        changed = record.commit(command.reservation_id)
        if changed:
            repo.add(record)
        return changed

    @handle(ReleaseReservation)
    def release_reservation(self, command):
        repo = current_domain.repository_for(InventoryRecord)
        record = repo.get(command.inventory_record_id)
        changed = record.release(command.reservation_id, reason=command.reason)
        if changed:
            repo.add(record)
        return changed
