"""InventoryRecord aggregate — stock counters for one (product, variant, warehouse).

Counter model:
    available: physical units held at the warehouse
    reserved:  units claimed by orders whose payment has not settled yet

The free-to-sell quantity is ``available - reserved``. ``0 <= reserved <=
available`` holds after every mutation. Every change appends an immutable
InventoryTransaction with before/after counters; replaying that log from
zero reproduces the stored counters, which is what reconciliation checks.
"""

from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from orderflow.domain import orderflow
from orderflow.errors import InsufficientStock, InvalidStateTransition
from orderflow.inventory.events import (
    LowStockDetected,
    ReservationCommitted,
    ReservationReleased,
    StockAdjusted,
    StockInitialized,
    StockReserved,
)
from orderflow.shared.clock import utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ReservationStatus(Enum):
    ACTIVE = "Active"
    COMMITTED = "Committed"
    RELEASED = "Released"


class TransactionType(Enum):
    RESERVE = "Reserve"
    COMMIT = "Commit"
    RELEASE = "Release"
    ADJUST = "Adjust"


class ReferenceKind(Enum):
    ORDER = "Order"
    MANUAL_ADJUSTMENT = "ManualAdjustment"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="InventoryRecord")
class Reservation:
    """A claim against free stock held on behalf of one order.

    ACTIVE -> COMMITTED when payment is captured (stock leaves the building),
    ACTIVE -> RELEASED when the checkout fails or the order is cancelled.
    Both terminal states are final.
    """

    order_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    status = String(choices=ReservationStatus, default=ReservationStatus.ACTIVE.value)
    reserved_at = DateTime(required=True)
    settled_at = DateTime()


@orderflow.entity(part_of="InventoryRecord")
class InventoryTransaction:
    """Append-only audit entry. Never edited once written."""

    sequence = Integer(required=True, min_value=1)
    transaction_type = String(required=True, choices=TransactionType)
    quantity_change = Integer(required=True)
    available_before = Integer(required=True)
    available_after = Integer(required=True)
    reserved_before = Integer(required=True)
    reserved_after = Integer(required=True)
    reference_kind = String(required=True, choices=ReferenceKind)
    reference_id = String(max_length=255)
    reservation_id = Identifier()
    reason = String(max_length=500)
    recorded_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@orderflow.aggregate
class InventoryRecord:
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    available = Integer(default=0, min_value=0)
    reserved = Integer(default=0, min_value=0)
    reorder_point = Integer(default=10, min_value=0)
    reservations = HasMany(Reservation)
    transactions = HasMany(InventoryTransaction)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def reserved_cannot_exceed_available(self):
        if (self.reserved or 0) > (self.available or 0):
            raise ValidationError({"reserved": [f"Reserved ({self.reserved}) cannot exceed available ({self.available})"]})

    @property
    def free(self) -> int:
        return self.available - self.reserved

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def initialize(cls, product_id, variant_id, warehouse_id, available=0, reorder_point=10):
        if available < 0:
            raise ValidationError({"available": ["Initial stock cannot be negative"]})

        now = utcnow()
        record = cls(
            product_id=product_id,
            variant_id=variant_id,
            warehouse_id=warehouse_id,
            available=0,
            reserved=0,
            reorder_point=reorder_point,
            created_at=now,
            updated_at=now,
        )
        if available:
            record._append(
                TransactionType.ADJUST,
                quantity_change=available,
                available_after=available,
                reserved_after=0,
                reference_kind=ReferenceKind.MANUAL_ADJUSTMENT,
                reason="Initial stock",
            )

        record.raise_(
            StockInitialized(
                inventory_record_id=str(record.id),
                product_id=str(product_id),
                variant_id=str(variant_id),
                warehouse_id=str(warehouse_id),
                available=available,
                reorder_point=reorder_point,
                initialized_at=now,
            )
        )
        return record

    # -------------------------------------------------------------------
    # Ledger operations
    # -------------------------------------------------------------------
    def reserve(self, order_id, quantity):
        if quantity is None or quantity < 1:
            raise ValidationError({"quantity": ["Reservation quantity must be positive"]})
        if self.free < quantity:
            raise InsufficientStock(
                self.product_id,
                self.variant_id,
                requested=quantity,
                available=self.free,
                warehouse_id=self.warehouse_id,
            )

        now = utcnow()
        reservation = Reservation(
            order_id=order_id,
            quantity=quantity,
            status=ReservationStatus.ACTIVE.value,
            reserved_at=now,
        )
        with atomic_change(self):
            self.add_reservations(reservation)
            self._append(
                TransactionType.RESERVE,
                quantity_change=quantity,
                available_after=self.available,
                reserved_after=self.reserved + quantity,
                reference_kind=ReferenceKind.ORDER,
                reference_id=str(order_id),
                reservation_id=str(reservation.id),
            )

        self.raise_(
            StockReserved(
                inventory_record_id=str(self.id),
                reservation_id=str(reservation.id),
                order_id=str(order_id),
                quantity=quantity,
                available=self.available,
                reserved=self.reserved,
                reserved_at=now,
            )
        )
        self._check_low_stock()
        return reservation

    def commit(self, reservation_id):
        """Convert a reservation into a stock deduction.

        Returns False when the reservation was already committed, so that a
        redelivered payment webhook has no further effect.
        """
        reservation = self._get_reservation(reservation_id)
        status = ReservationStatus(reservation.status)
        if status == ReservationStatus.COMMITTED:
            return False
        if status != ReservationStatus.ACTIVE:
            raise InvalidStateTransition("reservation", status.value, ReservationStatus.COMMITTED.value)

        now = utcnow()
        with atomic_change(self):
            reservation.status = ReservationStatus.COMMITTED.value
            reservation.settled_at = now
            self._append(
                TransactionType.COMMIT,
                quantity_change=-reservation.quantity,
                available_after=self.available - reservation.quantity,
                reserved_after=self.reserved - reservation.quantity,
                reference_kind=ReferenceKind.ORDER,
                reference_id=str(reservation.order_id),
                reservation_id=str(reservation.id),
            )

        self.raise_(
            ReservationCommitted(
                inventory_record_id=str(self.id),
                reservation_id=str(reservation.id),
                order_id=str(reservation.order_id),
                quantity=reservation.quantity,
                available=self.available,
                reserved=self.reserved,
                committed_at=now,
            )
        )
        return True

    def release(self, reservation_id, reason=None):
        """Return reserved units to free stock. Returns False if already released."""
        reservation = self._get_reservation(reservation_id)
        status = ReservationStatus(reservation.status)
        if status == ReservationStatus.RELEASED:
            return False
        if status != ReservationStatus.ACTIVE:
            raise InvalidStateTransition("reservation", status.value, ReservationStatus.RELEASED.value)

        now = utcnow()
        with atomic_change(self):
            reservation.status = ReservationStatus.RELEASED.value
            reservation.settled_at = now
            self._append(
                TransactionType.RELEASE,
                quantity_change=-reservation.quantity,
                available_after=self.available,
                reserved_after=self.reserved - reservation.quantity,
                reference_kind=ReferenceKind.ORDER,
                reference_id=str(reservation.order_id),
                reservation_id=str(reservation.id),
                reason=reason,
            )

        self.raise_(
            ReservationReleased(
                inventory_record_id=str(self.id),
                reservation_id=str(reservation.id),
                order_id=str(reservation.order_id),
                quantity=reservation.quantity,
                reason=reason,
                available=self.available,
                reserved=self.reserved,
                released_at=now,
            )
        )
        return True

    def adjust(self, delta, reason, reference_id=None):
        """Manual correction of physical stock (receiving, damage write-off)."""
        if not delta:
            raise ValidationError({"delta": ["Adjustment delta must be non-zero"]})
        if not reason:
            raise ValidationError({"reason": ["Adjustment reason is required"]})

        new_available = self.available + delta
        if new_available < 0:
            raise ValidationError({"delta": [f"Adjustment would make available stock negative ({new_available})"]})
        if new_available < self.reserved:
            raise ValidationError(
                {"delta": [f"Adjustment would leave available ({new_available}) below reserved ({self.reserved})"]}
            )

        previous = self.available
        with atomic_change(self):
            self._append(
                TransactionType.ADJUST,
                quantity_change=delta,
                available_after=new_available,
                reserved_after=self.reserved,
                reference_kind=ReferenceKind.MANUAL_ADJUSTMENT,
                reference_id=reference_id,
                reason=reason,
            )

        self.raise_(
            StockAdjusted(
                inventory_record_id=str(self.id),
                delta=delta,
                reason=reason,
                previous_available=previous,
                new_available=new_available,
                adjusted_at=self.updated_at,
            )
        )
        if delta < 0:
            self._check_low_stock()

    # -------------------------------------------------------------------
    # Audit trail
    # -------------------------------------------------------------------
    def ordered_transactions(self):
        return sorted(self.transactions, key=lambda t: t.sequence)

    def replay(self):
        """Rebuild the counters from the transaction log.

        Returns ``(available, reserved, broken)`` where ``broken`` lists the
        sequence numbers whose before-values do not match the running totals.
        """
        available = 0
        reserved = 0
        broken = []
        for txn in self.ordered_transactions():
            if txn.available_before != available or txn.reserved_before != reserved:
                broken.append(txn.sequence)

            kind = TransactionType(txn.transaction_type)
            if kind == TransactionType.RESERVE or kind == TransactionType.RELEASE:
                reserved += txn.quantity_change
            elif kind == TransactionType.COMMIT:
                available += txn.quantity_change
                reserved += txn.quantity_change
            else:
                available += txn.quantity_change

            if txn.available_after != available or txn.reserved_after != reserved:
                broken.append(txn.sequence)
        return available, reserved, sorted(set(broken))

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _get_reservation(self, reservation_id):
        for reservation in self.reservations:
            if str(reservation.id) == str(reservation_id):
                return reservation
        raise ValidationError({"reservation_id": [f"Reservation {reservation_id} not found"]})

    def _append(
        self,
        transaction_type,
        quantity_change,
        available_after,
        reserved_after,
        reference_kind,
        reference_id=None,
        reservation_id=None,
        reason=None,
    ):
        now = utcnow()
        txn = InventoryTransaction(
            sequence=len(self.transactions) + 1,
            transaction_type=transaction_type.value,
            quantity_change=quantity_change,
            available_before=self.available,
            available_after=available_after,
            reserved_before=self.reserved,
            reserved_after=reserved_after,
            reference_kind=reference_kind.value,
            reference_id=reference_id,
            reservation_id=reservation_id,
            reason=reason,
            recorded_at=now,
        )
        self.add_transactions(txn)
        self.available = available_after
        self.reserved = reserved_after
        self.updated_at = now

    def _check_low_stock(self):
        if self.free <= self.reorder_point:
            self.raise_(
                LowStockDetected(
                    inventory_record_id=str(self.id),
                    product_id=str(self.product_id),
                    variant_id=str(self.variant_id),
                    warehouse_id=str(self.warehouse_id),
                    free_stock=self.free,
                    reorder_point=self.reorder_point,
                )
            )
