"""Domain tests for the InventoryRecord aggregate: counters, reservations and the audit log."""

import pytest
from protean.exceptions import ValidationError

from orderflow.errors import InsufficientStock, InvalidStateTransition
from orderflow.inventory.events import (
    LowStockDetected,
    ReservationCommitted,
    ReservationReleased,
    StockAdjusted,
    StockInitialized,
    StockReserved,
)
from orderflow.inventory.record import InventoryRecord, ReservationStatus, TransactionType


def _record(available=10, reorder_point=0):
    return InventoryRecord.initialize(
        product_id="prod-001",
        variant_id="var-001",
        warehouse_id="wh-001",
        available=available,
        reorder_point=reorder_point,
    )


class TestInitialization:
    def test_initial_counters(self):
        record = _record(available=10)
        assert record.available == 10
        assert record.reserved == 0
        assert record.free == 10

    def test_initial_stock_is_logged_as_adjustment(self):
        record = _record(available=10)
        txns = record.ordered_transactions()
        assert len(txns) == 1
        assert txns[0].transaction_type == TransactionType.ADJUST.value
        assert txns[0].available_before == 0
        assert txns[0].available_after == 10

    def test_empty_record_has_no_transactions(self):
        record = _record(available=0)
        assert record.transactions == []

    def test_negative_initial_stock_rejected(self):
        with pytest.raises(ValidationError):
            _record(available=-1)

    def test_raises_stock_initialized(self):
        record = _record(available=5)
        assert any(isinstance(e, StockInitialized) for e in record._events)


class TestReserve:
    def test_reserve_moves_units_to_reserved(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)

        assert record.available == 10
        assert record.reserved == 4
        assert record.free == 6
        assert reservation.status == ReservationStatus.ACTIVE.value
        assert reservation.quantity == 4

    def test_reserve_all_free_stock(self):
        record = _record(available=3)
        record.reserve("ord-001", 3)
        assert record.free == 0

    def test_reserve_more_than_free_raises_insufficient_stock(self):
        record = _record(available=3)
        record.reserve("ord-001", 2)

        with pytest.raises(InsufficientStock) as exc:
            record.reserve("ord-002", 2)

        assert exc.value.requested == 2
        assert exc.value.available == 1
        # Nothing changed
        assert record.reserved == 2
        assert len(record.reservations) == 1

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, quantity):
        record = _record(available=3)
        with pytest.raises(ValidationError):
            record.reserve("ord-001", quantity)

    def test_reserve_raises_event(self):
        record = _record(available=10)
        record.reserve("ord-001", 2)
        events = [e for e in record._events if isinstance(e, StockReserved)]
        assert len(events) == 1
        assert events[0].reserved == 2

    def test_low_stock_detected_at_reorder_point(self):
        record = _record(available=10, reorder_point=5)
        record.reserve("ord-001", 5)
        assert any(isinstance(e, LowStockDetected) for e in record._events)


class TestCommit:
    def test_commit_deducts_available_and_reserved(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)

        assert record.commit(reservation.id) is True
        assert record.available == 6
        assert record.reserved == 0
        assert reservation.status == ReservationStatus.COMMITTED.value

    def test_commit_twice_is_a_no_op(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)
        record.commit(reservation.id)

        assert record.commit(reservation.id) is False
        assert record.available == 6
        assert len([e for e in record._events if isinstance(e, ReservationCommitted)]) == 1

    def test_commit_released_reservation_rejected(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)
        record.release(reservation.id)

        with pytest.raises(InvalidStateTransition):
            record.commit(reservation.id)

    def test_commit_unknown_reservation_rejected(self):
        record = _record(available=10)
        with pytest.raises(ValidationError):
            record.commit("missing")


class TestRelease:
    def test_release_returns_units_to_free(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)

        assert record.release(reservation.id, reason="Payment declined") is True
        assert record.available == 10
        assert record.reserved == 0
        assert reservation.status == ReservationStatus.RELEASED.value

    def test_release_twice_is_a_no_op(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)
        record.release(reservation.id)

        assert record.release(reservation.id) is False
        assert record.reserved == 0
        assert len([e for e in record._events if isinstance(e, ReservationReleased)]) == 1

    def test_release_committed_reservation_rejected(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 4)
        record.commit(reservation.id)

        with pytest.raises(InvalidStateTransition):
            record.release(reservation.id)


class TestAdjust:
    def test_adjust_up(self):
        record = _record(available=10)
        record.adjust(5, reason="Received shipment")
        assert record.available == 15
        assert any(isinstance(e, StockAdjusted) for e in record._events)

    def test_adjust_down(self):
        record = _record(available=10)
        record.adjust(-3, reason="Damaged")
        assert record.available == 7

    def test_adjust_below_zero_rejected(self):
        record = _record(available=2)
        with pytest.raises(ValidationError):
            record.adjust(-3, reason="Damaged")
        assert record.available == 2

    def test_adjust_below_reserved_rejected(self):
        record = _record(available=10)
        record.reserve("ord-001", 8)

        with pytest.raises(ValidationError):
            record.adjust(-3, reason="Shrinkage")
        assert record.available == 10

    def test_zero_delta_rejected(self):
        record = _record(available=10)
        with pytest.raises(ValidationError):
            record.adjust(0, reason="Nothing")

    def test_reason_required(self):
        record = _record(available=10)
        with pytest.raises(ValidationError):
            record.adjust(1, reason="")


class TestAuditLog:
    def test_every_mutation_appends_one_transaction(self):
        record = _record(available=10)
        first = record.reserve("ord-001", 2)
        second = record.reserve("ord-002", 3)
        record.commit(first.id)
        record.release(second.id)
        record.adjust(4, reason="Cycle count")

        types = [t.transaction_type for t in record.ordered_transactions()]
        assert types == [
            TransactionType.ADJUST.value,
            TransactionType.RESERVE.value,
            TransactionType.RESERVE.value,
            TransactionType.COMMIT.value,
            TransactionType.RELEASE.value,
            TransactionType.ADJUST.value,
        ]
        assert [t.sequence for t in record.ordered_transactions()] == [1, 2, 3, 4, 5, 6]

    def test_before_values_chain_to_previous_after_values(self):
        record = _record(available=10)
        reservation = record.reserve("ord-001", 2)
        record.commit(reservation.id)

        txns = record.ordered_transactions()
        for previous, current in zip(txns, txns[1:], strict=False):
            assert current.available_before == previous.available_after
            assert current.reserved_before == previous.reserved_after

    def test_replay_matches_counters(self):
        record = _record(available=10)
        first = record.reserve("ord-001", 2)
        second = record.reserve("ord-002", 5)
        record.commit(first.id)
        record.release(second.id)
        record.adjust(-1, reason="Damaged")

        available, reserved, broken = record.replay()
        assert (available, reserved) == (record.available, record.reserved)
        assert broken == []

    def test_replay_flags_tampered_entry(self):
        record = _record(available=10)
        record.reserve("ord-001", 2)
        record.ordered_transactions()[1].available_after = 99

        _, _, broken = record.replay()
        assert 2 in broken
