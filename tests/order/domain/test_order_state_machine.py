"""Domain tests for the Order aggregate's three status axes."""

from uuid import uuid4

import pytest
from protean.exceptions import ValidationError

from orderflow.errors import InvalidStateTransition, OverShipment
from orderflow.order.events import OrderCancelled, OrderConfirmed, OrderPaymentFailed, OrderPlaced
from orderflow.order.order import (
    FulfillmentStatus,
    Order,
    OrderPricing,
    OrderStatus,
    PaymentStatus,
    ReservationState,
    StatusAxis,
)


def _order(quantity=10, unit_price=10.0):
    items = [
        {
            "product_id": "prod-001",
            "variant_id": "var-001",
            "title": "Tee",
            "quantity": quantity,
            "unit_price": unit_price,
        }
    ]
    reservations = [
        {
            "reservation_id": "res-001",
            "inventory_record_id": "inv-001",
            "product_id": "prod-001",
            "variant_id": "var-001",
            "warehouse_id": "wh-001",
            "quantity": quantity,
        }
    ]
    return Order.place(
        order_id=str(uuid4()),
        items_data=items,
        reservations_data=reservations,
        pricing=OrderPricing.compute(quantity * unit_price),
        customer_id="cust-001",
        idempotency_key="key-001",
    )


def _paid_order(**kwargs):
    order = _order(**kwargs)
    order.confirm_payment(payment_id="pay-001", provider_reference="txn-001")
    return order


class TestPlacement:
    def test_initial_state(self):
        order = _order()
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.fulfillment_status == FulfillmentStatus.UNFULFILLED.value
        assert order.order_number.startswith("ORD-")
        assert order.is_pending_capture
        assert any(isinstance(e, OrderPlaced) for e in order._events)

    def test_reservations_start_held(self):
        order = _order()
        assert [r.state for r in order.reservations] == [ReservationState.HELD.value]

    def test_empty_order_rejected(self):
        with pytest.raises(ValidationError):
            Order.place(order_id=str(uuid4()), items_data=[], reservations_data=[], pricing=OrderPricing.compute(0))


class TestPaymentOutcome:
    def test_confirm_payment(self):
        order = _paid_order()
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.reservations_in(ReservationState.COMMITTED)
        assert order.provider_reference == "txn-001"
        assert any(isinstance(e, OrderConfirmed) for e in order._events)

    def test_confirm_twice_is_a_no_op(self):
        order = _paid_order()
        assert order.confirm_payment(payment_id="pay-001") is False
        assert len(order.history_for(StatusAxis.PAYMENT)) == 1

    def test_fail_payment_cancels_and_releases(self):
        order = _order()
        assert order.fail_payment("Card declined") is True

        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.cancellation_reason == "Card declined"
        assert order.reservations_in(ReservationState.RELEASED)
        assert any(isinstance(e, OrderPaymentFailed) for e in order._events)
        assert any(isinstance(e, OrderCancelled) for e in order._events)

    def test_fail_twice_is_a_no_op(self):
        order = _order()
        order.fail_payment("Card declined")
        assert order.fail_payment("Card declined") is False

    def test_cannot_fail_a_paid_order(self):
        order = _paid_order()
        with pytest.raises(InvalidStateTransition):
            order.fail_payment("Late decline")

    def test_cannot_confirm_a_failed_order(self):
        order = _order()
        order.fail_payment("Card declined")
        with pytest.raises(InvalidStateTransition):
            order.confirm_payment()


class TestRefundStatus:
    def test_partial_refund(self):
        order = _paid_order()
        order.record_refund("pay-001", refunded_total=30.0, payment_amount=100.0)
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert order.status == OrderStatus.CONFIRMED.value

    def test_full_refund_after_partial(self):
        order = _paid_order()
        order.record_refund("pay-001", refunded_total=30.0, payment_amount=100.0)
        order.record_refund("pay-001", refunded_total=100.0, payment_amount=100.0)
        assert order.payment_status == PaymentStatus.REFUNDED.value

    def test_full_refund_of_delivered_order_closes_it(self):
        order = _paid_order(quantity=1, unit_price=100.0)
        order.record_fulfillment({str(order.items[0].id): 1})
        order.mark_delivered()

        order.record_refund("pay-001", refunded_total=100.0, payment_amount=100.0)
        assert order.status == OrderStatus.REFUNDED.value


class TestCancellation:
    def test_cancel_pending_order(self):
        order = _order()
        order.cancel("Changed my mind")

        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.reservations_in(ReservationState.RELEASED)

    def test_paid_order_must_be_refunded_first(self):
        order = _paid_order()
        with pytest.raises(InvalidStateTransition):
            order.cancel("Changed my mind")

    def test_refunded_order_can_be_cancelled(self):
        order = _paid_order()
        order.record_refund("pay-001", refunded_total=100.0, payment_amount=100.0)
        order.cancel("Changed my mind")
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.REFUNDED.value

    def test_shipped_order_cannot_be_cancelled(self):
        order = _paid_order()
        order.record_fulfillment({str(order.items[0].id): 4})
        with pytest.raises(InvalidStateTransition):
            order.assert_cancellable()

    def test_cancelled_is_terminal(self):
        order = _order()
        order.cancel("Changed my mind")
        assert order.can_transition(StatusAxis.STATUS, OrderStatus.CONFIRMED) is False
        with pytest.raises(InvalidStateTransition):
            order.mark_disputed("Chargeback")


class TestFulfillment:
    def test_split_shipment_walks_fulfillment_axis(self):
        order = _paid_order(quantity=10)
        item_id = str(order.items[0].id)

        order.record_fulfillment({item_id: 6}, shipment_id="shp-001")
        assert order.fulfillment_status == FulfillmentStatus.PARTIALLY_FULFILLED.value
        assert order.status == OrderStatus.PROCESSING.value

        order.record_fulfillment({item_id: 4}, shipment_id="shp-002")
        assert order.fulfillment_status == FulfillmentStatus.FULFILLED.value
        assert order.status == OrderStatus.SHIPPED.value

        history = [(e.from_status, e.to_status) for e in order.history_for(StatusAxis.FULFILLMENT)]
        assert history == [
            (FulfillmentStatus.UNFULFILLED.value, FulfillmentStatus.PARTIALLY_FULFILLED.value),
            (FulfillmentStatus.PARTIALLY_FULFILLED.value, FulfillmentStatus.FULFILLED.value),
        ]

    def test_over_shipment_rejected_without_changes(self):
        order = _paid_order(quantity=10)
        item_id = str(order.items[0].id)
        order.record_fulfillment({item_id: 6})

        with pytest.raises(OverShipment):
            order.record_fulfillment({item_id: 5})
        assert order.items[0].fulfilled_quantity == 6

    def test_unpaid_order_cannot_ship(self):
        order = _order()
        with pytest.raises(InvalidStateTransition):
            order.record_fulfillment({str(order.items[0].id): 1})

    def test_unknown_item_rejected(self):
        order = _paid_order()
        with pytest.raises(ValidationError):
            order.record_fulfillment({"item-404": 1})

    def test_delivered_then_returned(self):
        order = _paid_order(quantity=2)
        order.record_fulfillment({str(order.items[0].id): 2})
        order.mark_delivered()
        order.mark_returned("Wrong size")
        assert order.status == OrderStatus.RETURNED.value

    def test_cannot_deliver_before_shipping(self):
        order = _paid_order()
        with pytest.raises(InvalidStateTransition):
            order.mark_delivered()


class TestStatusHistory:
    def test_history_is_append_only_and_sequenced(self):
        order = _paid_order(quantity=1)
        order.record_fulfillment({str(order.items[0].id): 1})

        sequences = [e.sequence for e in order.status_history]
        assert sorted(sequences) == list(range(1, len(sequences) + 1))
        axes = {e.axis for e in order.status_history}
        assert axes == {StatusAxis.PAYMENT.value, StatusAxis.STATUS.value, StatusAxis.FULFILLMENT.value}
