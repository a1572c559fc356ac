"""InventoryLedger — the only entry point that mutates stock counters.

Every mutation for a (product, variant, warehouse) key runs under that key's
lock, so reserve/commit/release/adjust are linearizable per key while
different keys proceed in parallel. The lock is held for exactly one command
(one unit of work) and never across calls to external systems.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from orderflow.errors import InsufficientStock
from orderflow.inventory.adjustment import AdjustStock
from orderflow.inventory.initialization import InitializeStock
from orderflow.inventory.record import InventoryRecord
from orderflow.inventory.reservation import CommitReservation, ReleaseReservation, ReserveStock
from orderflow.utils.locks import inventory_locks

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReservationHandle:
    """Everything needed to commit or release a reservation later."""

    reservation_id: str
    inventory_record_id: str
    product_id: str
    variant_id: str
    warehouse_id: str
    order_id: str
    quantity: int

    @property
    def key(self):
        return (self.product_id, self.variant_id, self.warehouse_id)


@dataclass(frozen=True)
class LedgerReconciliation:
    inventory_record_id: str
    available: int
    reserved: int
    replayed_available: int
    replayed_reserved: int
    broken_sequences: tuple = ()

    @property
    def consistent(self) -> bool:
        return (
            self.available == self.replayed_available
            and self.reserved == self.replayed_reserved
            and not self.broken_sequences
        )


def _key(product_id, variant_id, warehouse_id):
    return (str(product_id), str(variant_id), str(warehouse_id))


class InventoryLedger:
    def _repo(self):
        return current_domain.repository_for(InventoryRecord)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def record(self, product_id, variant_id, warehouse_id) -> InventoryRecord | None:
        return self._repo().find_by_key(product_id, variant_id, warehouse_id)

    def find_records(self, product_id, variant_id) -> list[InventoryRecord]:
        return self._repo().find_for_variant(product_id, variant_id)

    def transactions(self, product_id, variant_id, warehouse_id):
        record = self._require(product_id, variant_id, warehouse_id)
        return record.ordered_transactions()

    def reconcile(self, product_id, variant_id, warehouse_id) -> LedgerReconciliation:
        record = self._require(product_id, variant_id, warehouse_id)
        available, reserved, broken = record.replay()
        result = LedgerReconciliation(
            inventory_record_id=str(record.id),
            available=record.available,
            reserved=record.reserved,
            replayed_available=available,
            replayed_reserved=reserved,
            broken_sequences=tuple(broken),
        )
        if not result.consistent:
            logger.error(
                "Inventory ledger drift detected",
                inventory_record_id=str(record.id),
                available=record.available,
                reserved=record.reserved,
                replayed_available=available,
                replayed_reserved=reserved,
                broken_sequences=broken,
            )
        return result

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def initialize(self, product_id, variant_id, warehouse_id, available=0, reorder_point=10) -> InventoryRecord:
        with inventory_locks.hold(_key(product_id, variant_id, warehouse_id)):
            record_id = current_domain.process(
                InitializeStock(
                    product_id=product_id,
                    variant_id=variant_id,
                    warehouse_id=warehouse_id,
                    available=available,
                    reorder_point=reorder_point,
                ),
                asynchronous=False,
            )
        logger.info(
            "Stock initialized",
            product_id=str(product_id),
            variant_id=str(variant_id),
            warehouse_id=str(warehouse_id),
            available=available,
        )
        return self._repo().get(record_id)

    def reserve(self, product_id, variant_id, warehouse_id, quantity, order_id) -> ReservationHandle:
        key = _key(product_id, variant_id, warehouse_id)
        with inventory_locks.hold(key):
            record = self._repo().find_by_key(*key)
            if record is None:
                raise InsufficientStock(product_id, variant_id, quantity, 0, warehouse_id=warehouse_id)
            reservation_id = current_domain.process(
                ReserveStock(
                    inventory_record_id=str(record.id),
                    order_id=order_id,
                    quantity=quantity,
                ),
                asynchronous=False,
            )

        logger.info(
            "Stock reserved",
            order_id=str(order_id),
            product_id=key[0],
            variant_id=key[1],
            warehouse_id=key[2],
            quantity=quantity,
            reservation_id=reservation_id,
        )
        return ReservationHandle(
            reservation_id=str(reservation_id),
            inventory_record_id=str(record.id),
            product_id=key[0],
            variant_id=key[1],
            warehouse_id=key[2],
            order_id=str(order_id),
            quantity=quantity,
        )

    def commit(self, reservation: ReservationHandle) -> bool:
        with inventory_locks.hold(reservation.key):
            changed = current_domain.process(
                CommitReservation(
                    inventory_record_id=reservation.inventory_record_id,
                    reservation_id=reservation.reservation_id,
                ),
                asynchronous=False,
            )
        if changed:
            logger.info(
                "Reservation committed",
                order_id=reservation.order_id,
                reservation_id=reservation.reservation_id,
                quantity=reservation.quantity,
            )
        return changed

    def release(self, reservation: ReservationHandle, reason=None) -> bool:
        with inventory_locks.hold(reservation.key):
            changed = current_domain.process(
                ReleaseReservation(
                    inventory_record_id=reservation.inventory_record_id,
                    reservation_id=reservation.reservation_id,
                    reason=reason,
                ),
                asynchronous=False,
            )
        if changed:
            logger.info(
                "Reservation released",
                order_id=reservation.order_id,
                reservation_id=reservation.reservation_id,
                quantity=reservation.quantity,
                reason=reason,
            )
        return changed

    def release_all(self, reservations, reason=None) -> None:
        for reservation in reservations:
            self.release(reservation, reason=reason)

    def adjust(self, product_id, variant_id, warehouse_id, delta, reason, reference_id=None) -> InventoryRecord:
        key = _key(product_id, variant_id, warehouse_id)
        with inventory_locks.hold(key):
            record = self._require(*key)
            current_domain.process(
                AdjustStock(
                    inventory_record_id=str(record.id),
                    delta=delta,
                    reason=reason,
                    reference_id=reference_id,
                ),
                asynchronous=False,
            )
        logger.info(
            "Stock adjusted",
            product_id=key[0],
            variant_id=key[1],
            warehouse_id=key[2],
            delta=delta,
            reason=reason,
        )
        return self._repo().get(str(record.id))

    def reserve_line(self, product_id, variant_id, quantity, order_id, warehouse_ids) -> list[ReservationHandle]:
        """Reserve ``quantity`` units across warehouses in preference order.

        Partial reservations are aggregated until the line is covered. If the
        candidates together cannot cover it, everything taken for this line is
        released before ``InsufficientStock`` is raised.
        """
        if quantity is None or quantity < 1:
            raise ValidationError({"quantity": ["Line quantity must be positive"]})

        taken: list[ReservationHandle] = []
        remaining = quantity
        seen = set()
        try:
            for warehouse_id in warehouse_ids:
                if remaining == 0:
                    break
                if str(warehouse_id) in seen:
                    continue
                seen.add(str(warehouse_id))

                key = _key(product_id, variant_id, warehouse_id)
                with inventory_locks.hold(key):
                    record = self._repo().find_by_key(*key)
                    if record is None or record.free <= 0:
                        continue
                    portion = min(record.free, remaining)
                    reservation_id = current_domain.process(
                        ReserveStock(
                            inventory_record_id=str(record.id),
                            order_id=order_id,
                            quantity=portion,
                        ),
                        asynchronous=False,
                    )
                taken.append(
                    ReservationHandle(
                        reservation_id=str(reservation_id),
                        inventory_record_id=str(record.id),
                        product_id=key[0],
                        variant_id=key[1],
                        warehouse_id=key[2],
                        order_id=str(order_id),
                        quantity=portion,
                    )
                )
                remaining -= portion

            if remaining > 0:
                raise InsufficientStock(product_id, variant_id, requested=quantity, available=quantity - remaining)
        except Exception:
            if taken:
                logger.warning(
                    "Releasing partial reservations for line",
                    order_id=str(order_id),
                    product_id=str(product_id),
                    variant_id=str(variant_id),
                    released=len(taken),
                )
                self.release_all(taken, reason="Line could not be fully reserved")
            raise

        logger.info(
            "Line reserved",
            order_id=str(order_id),
            product_id=str(product_id),
            variant_id=str(variant_id),
            quantity=quantity,
            warehouses=[r.warehouse_id for r in taken],
        )
        return taken

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _require(self, product_id, variant_id, warehouse_id) -> InventoryRecord:
        record = self._repo().find_by_key(product_id, variant_id, warehouse_id)
        if record is None:
            raise ObjectNotFoundError(f"No stock record for {product_id}/{variant_id} at warehouse {warehouse_id}")
        return record
