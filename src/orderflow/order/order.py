"""Order aggregate (CQRS) — the state machine at the centre of checkout.

An order carries three independent but correlated state axes:

    status:             Pending -> Confirmed -> Processing -> Shipped -> Delivered
                        with Cancelled / Refunded / Returned / Disputed as side branches
    payment_status:     Pending -> Paid | Failed;  Paid -> Partially_Refunded -> Refunded
    fulfillment_status: Unfulfilled -> Partially_Fulfilled -> Fulfilled (never regresses)

Every transition is checked against the maps below before anything is
mutated, and recorded as an append-only OrderStatusEntry. Items are snapshots
of the cart at checkout; they are not live catalogue references.
"""

import json
from enum import Enum
from uuid import uuid4

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from orderflow.domain import orderflow
from orderflow.errors import InvalidStateTransition, OverShipment
from orderflow.order.events import (
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderDisputed,
    OrderItemsFulfilled,
    OrderPaymentFailed,
    OrderPlaced,
    OrderRefundRecorded,
    OrderReturned,
    OrderShipped,
    OrderStatusChanged,
)
from orderflow.shared.clock import utcnow
from orderflow.shared.money import as_float, to_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    RETURNED = "Returned"
    DISPUTED = "Disputed"


class PaymentStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    PARTIALLY_REFUNDED = "Partially_Refunded"
    REFUNDED = "Refunded"


class FulfillmentStatus(Enum):
    UNFULFILLED = "Unfulfilled"
    PARTIALLY_FULFILLED = "Partially_Fulfilled"
    FULFILLED = "Fulfilled"


class ReservationState(Enum):
    HELD = "Held"
    COMMITTED = "Committed"
    RELEASED = "Released"


class StatusAxis(Enum):
    STATUS = "status"
    PAYMENT = "payment_status"
    FULFILLMENT = "fulfillment_status"


_SIDE_BRANCHES = {
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
    OrderStatus.RETURNED,
    OrderStatus.DISPUTED,
}

# State machine transition maps
_STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED} | _SIDE_BRANCHES,
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING} | _SIDE_BRANCHES,
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED} | _SIDE_BRANCHES,
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED} | _SIDE_BRANCHES,
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED, OrderStatus.RETURNED, OrderStatus.DISPUTED},
    OrderStatus.DISPUTED: {OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.RETURNED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}

_FULFILLMENT_TRANSITIONS = {
    FulfillmentStatus.UNFULFILLED: {FulfillmentStatus.PARTIALLY_FULFILLED, FulfillmentStatus.FULFILLED},
    FulfillmentStatus.PARTIALLY_FULFILLED: {FulfillmentStatus.FULFILLED},
    FulfillmentStatus.FULFILLED: set(),
}

_AXES = {
    StatusAxis.STATUS: (OrderStatus, _STATUS_TRANSITIONS),
    StatusAxis.PAYMENT: (PaymentStatus, _PAYMENT_TRANSITIONS),
    StatusAxis.FULFILLMENT: (FulfillmentStatus, _FULFILLMENT_TRANSITIONS),
}

# States from which a customer or operator may cancel
_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}

# A full refund of an order in these states closes it as Refunded
_REFUNDABLE_AFTER_SHIPPING = {OrderStatus.DELIVERED, OrderStatus.RETURNED, OrderStatus.DISPUTED}


def generate_order_number(now=None) -> str:
    now = now or utcnow()
    return f"ORD-{now.strftime('%Y%m%d')}-{uuid4().hex[:8].upper()}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@orderflow.value_object(part_of="Order")
class ShippingAddress:
    """Delivery address captured at checkout; later customer edits do not affect it."""

    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)


@orderflow.value_object(part_of="Order")
class OrderPricing:
    """Totals locked at checkout. ``grand_total = subtotal + tax + shipping - discount``."""

    subtotal = Float(default=0.0, min_value=0.0)
    discount_total = Float(default=0.0, min_value=0.0)
    tax_total = Float(default=0.0, min_value=0.0)
    shipping_total = Float(default=0.0, min_value=0.0)
    grand_total = Float(default=0.0, min_value=0.0)

    @invariant.post
    def grand_total_must_balance(self):
        expected = (
            to_money(self.subtotal)
            + to_money(self.tax_total)
            + to_money(self.shipping_total)
            - to_money(self.discount_total)
        )
        if to_money(self.grand_total) != expected:
            raise ValidationError(
                {"grand_total": [f"Grand total {self.grand_total} does not equal computed total {expected}"]}
            )

    @invariant.post
    def discount_cannot_exceed_subtotal(self):
        if to_money(self.discount_total) > to_money(self.subtotal):
            raise ValidationError({"discount_total": ["Discount cannot exceed the subtotal"]})

    @classmethod
    def compute(cls, subtotal, discount=0, tax=0, shipping=0):
        subtotal, discount, tax, shipping = (to_money(v) for v in (subtotal, discount, tax, shipping))
        return cls(
            subtotal=as_float(subtotal),
            discount_total=as_float(discount),
            tax_total=as_float(tax),
            shipping_total=as_float(shipping),
            grand_total=as_float(subtotal + tax + shipping - discount),
        )


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderflow.entity(part_of="Order")
class OrderItem:
    """A line of the order, frozen at checkout, with its shipped quantity."""

    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    title = String(max_length=255)
    category = String(max_length=100)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    fulfilled_quantity = Integer(default=0, min_value=0)

    @invariant.post
    def fulfilled_cannot_exceed_ordered(self):
        if (self.fulfilled_quantity or 0) > self.quantity:
            raise ValidationError({"fulfilled_quantity": ["Fulfilled quantity cannot exceed ordered quantity"]})

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.fulfilled_quantity or 0)


@orderflow.entity(part_of="Order")
class OrderReservation:
    """Back-reference to an inventory reservation taken for this order."""

    reservation_id = Identifier(required=True)
    inventory_record_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    state = String(choices=ReservationState, default=ReservationState.HELD.value)


@orderflow.entity(part_of="Order")
class OrderStatusEntry:
    """Append-only history of transitions across all three axes."""

    sequence = Integer(required=True, min_value=1)
    axis = String(required=True, choices=StatusAxis)
    from_status = String(required=True, max_length=50)
    to_status = String(required=True, max_length=50)
    reason = String(max_length=500)
    occurred_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@orderflow.aggregate
class Order:
    order_number = String(required=True, max_length=30, unique=True)
    customer_id = Identifier()
    session_id = String(max_length=255)
    cart_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    fulfillment_status = String(choices=FulfillmentStatus, default=FulfillmentStatus.UNFULFILLED.value)
    items = HasMany(OrderItem)
    reservations = HasMany(OrderReservation)
    status_history = HasMany(OrderStatusEntry)
    shipping_address = ValueObject(ShippingAddress)
    pricing = ValueObject(OrderPricing)
    currency = String(max_length=3, default="USD")
    coupon_code = String(max_length=50)
    free_shipping = Boolean(default=False)
    idempotency_key = String(max_length=255, unique=True)
    payment_id = Identifier()
    provider_reference = String(max_length=255)
    cancellation_reason = String(max_length=500)
    placed_at = DateTime()
    confirmed_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_id,
        items_data,
        reservations_data,
        pricing,
        shipping_address=None,
        customer_id=None,
        session_id=None,
        cart_id=None,
        currency="USD",
        coupon_code=None,
        free_shipping=False,
        idempotency_key=None,
    ):
        if not items_data:
            raise ValidationError({"items": ["An order must contain at least one item"]})

        now = utcnow()
        order = cls(
            id=order_id,
            order_number=generate_order_number(now),
            customer_id=customer_id,
            session_id=session_id,
            cart_id=cart_id,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            fulfillment_status=FulfillmentStatus.UNFULFILLED.value,
            shipping_address=ShippingAddress(**shipping_address) if shipping_address else None,
            pricing=pricing,
            currency=currency,
            coupon_code=coupon_code,
            free_shipping=bool(free_shipping),
            idempotency_key=idempotency_key,
            placed_at=now,
        )
        for item in items_data:
            order.add_items(
                OrderItem(
                    product_id=item["product_id"],
                    variant_id=item["variant_id"],
                    title=item.get("title"),
                    category=item.get("category"),
                    quantity=item["quantity"],
                    unit_price=item["unit_price"],
                    fulfilled_quantity=0,
                )
            )
        for reservation in reservations_data or []:
            order.add_reservations(
                OrderReservation(
                    reservation_id=reservation["reservation_id"],
                    inventory_record_id=reservation["inventory_record_id"],
                    product_id=reservation["product_id"],
                    variant_id=reservation["variant_id"],
                    warehouse_id=reservation["warehouse_id"],
                    quantity=reservation["quantity"],
                    state=ReservationState.HELD.value,
                )
            )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id) if customer_id else None,
                items=json.dumps(items_data),
                subtotal=pricing.subtotal,
                discount_total=pricing.discount_total,
                tax_total=pricing.tax_total,
                shipping_total=pricing.shipping_total,
                grand_total=pricing.grand_total,
                currency=currency,
                coupon_code=coupon_code,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def grand_total(self) -> float:
        return self.pricing.grand_total if self.pricing else 0.0

    def get_item(self, item_id):
        for item in self.items:
            if str(item.id) == str(item_id):
                return item
        return None

    def reservations_in(self, state):
        return [r for r in self.reservations if r.state == state.value]

    def history_for(self, axis):
        return [
            entry for entry in sorted(self.status_history, key=lambda e: e.sequence) if entry.axis == axis.value
        ]

    @property
    def is_pending_capture(self) -> bool:
        return self.status == OrderStatus.PENDING.value and self.payment_status == PaymentStatus.PENDING.value

    # -------------------------------------------------------------------
    # Payment outcome
    # -------------------------------------------------------------------
    def confirm_payment(self, payment_id=None, provider_reference=None):
        """Capture succeeded: reservations are committed and the order is confirmed."""
        if self.payment_status == PaymentStatus.PAID.value:
            return False
        self._assert_can_transition(StatusAxis.PAYMENT, PaymentStatus.PAID)
        self._assert_can_transition(StatusAxis.STATUS, OrderStatus.CONFIRMED)

        now = utcnow()
        with atomic_change(self):
            self._transition(StatusAxis.PAYMENT, PaymentStatus.PAID, "Payment captured", now)
            self._transition(StatusAxis.STATUS, OrderStatus.CONFIRMED, "Payment captured", now)
            self._mark_reservations(ReservationState.HELD, ReservationState.COMMITTED)
            self.payment_id = payment_id or self.payment_id
            self.provider_reference = provider_reference or self.provider_reference
            self.confirmed_at = now

        self.raise_(
            OrderConfirmed(
                order_id=str(self.id),
                payment_id=str(payment_id) if payment_id else None,
                provider_reference=provider_reference,
                amount=self.grand_total,
                confirmed_at=now,
            )
        )
        return True

    def fail_payment(self, reason, payment_id=None):
        """Capture failed: reservations are released and the order is cancelled."""
        if self.payment_status == PaymentStatus.FAILED.value:
            return False
        self._assert_can_transition(StatusAxis.PAYMENT, PaymentStatus.FAILED)
        self._assert_can_transition(StatusAxis.STATUS, OrderStatus.CANCELLED)

        now = utcnow()
        previous = self.status
        with atomic_change(self):
            self._transition(StatusAxis.PAYMENT, PaymentStatus.FAILED, reason, now)
            self._transition(StatusAxis.STATUS, OrderStatus.CANCELLED, reason, now)
            self._mark_reservations(ReservationState.HELD, ReservationState.RELEASED)
            self.payment_id = payment_id or self.payment_id
            self.cancellation_reason = reason
            self.cancelled_at = now

        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                payment_id=str(payment_id) if payment_id else None,
                reason=reason,
                failed_at=now,
            )
        )
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                previous_status=previous,
                reason=reason,
                cancelled_at=now,
            )
        )
        return True

    def record_payment_attempt(self, payment_id):
        self.payment_id = payment_id

    def record_refund(self, payment_id, refunded_total, payment_amount):
        """Move payment_status to Refunded or Partially_Refunded after a settled refund."""
        refunded = to_money(refunded_total)
        target = (
            PaymentStatus.REFUNDED if refunded >= to_money(payment_amount) else PaymentStatus.PARTIALLY_REFUNDED
        )
        now = utcnow()
        if self.payment_status != target.value:
            self._assert_can_transition(StatusAxis.PAYMENT, target)
        with atomic_change(self):
            self._transition(StatusAxis.PAYMENT, target, f"Refunded {refunded}", now)
            if target == PaymentStatus.REFUNDED and OrderStatus(self.status) in _REFUNDABLE_AFTER_SHIPPING:
                self._transition(StatusAxis.STATUS, OrderStatus.REFUNDED, "Payment fully refunded", now)

        self.raise_(
            OrderRefundRecorded(
                order_id=str(self.id),
                payment_id=str(payment_id),
                refunded_total=as_float(refunded),
                payment_amount=as_float(to_money(payment_amount)),
                payment_status=self.payment_status,
                recorded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def assert_cancellable(self):
        status = OrderStatus(self.status)
        if status not in _CANCELLABLE_STATES:
            raise InvalidStateTransition("status", status.value, OrderStatus.CANCELLED.value)
        if self.fulfillment_status != FulfillmentStatus.UNFULFILLED.value:
            raise InvalidStateTransition("fulfillment_status", self.fulfillment_status, OrderStatus.CANCELLED.value)
        if self.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value:
            raise InvalidStateTransition("payment_status", self.payment_status, OrderStatus.CANCELLED.value)

    def cancel(self, reason):
        """Cancel before anything has shipped.

        Held reservations are marked released. A paid order must have been
        fully refunded first; a pending capture is recorded as failed.
        """
        self.assert_cancellable()
        if self.payment_status == PaymentStatus.PAID.value:
            raise InvalidStateTransition("payment_status", self.payment_status, OrderStatus.CANCELLED.value)

        now = utcnow()
        previous = self.status
        with atomic_change(self):
            if self.payment_status == PaymentStatus.PENDING.value:
                self._transition(StatusAxis.PAYMENT, PaymentStatus.FAILED, "Cancelled before capture", now)
            self._transition(StatusAxis.STATUS, OrderStatus.CANCELLED, reason, now)
            self._mark_reservations(ReservationState.HELD, ReservationState.RELEASED)
            self.cancellation_reason = reason
            self.cancelled_at = now

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                previous_status=previous,
                reason=reason,
                cancelled_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def validate_fulfillment(self, quantities):
        if self.payment_status != PaymentStatus.PAID.value:
            raise InvalidStateTransition("payment_status", self.payment_status, "Shipped")
        if not quantities:
            raise ValidationError({"items": ["A shipment must contain at least one item"]})

        for item_id, quantity in quantities.items():
            item = self.get_item(item_id)
            if item is None:
                raise ValidationError({"items": [f"Order item {item_id} is not part of order {self.id}"]})
            if quantity is None or quantity < 1:
                raise ValidationError({"items": [f"Shipped quantity for item {item_id} must be positive"]})
            if quantity > item.remaining_quantity:
                raise OverShipment(item_id, item.quantity, item.fulfilled_quantity or 0, quantity)

        status = OrderStatus(self.status)
        if status not in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING):
            raise InvalidStateTransition("status", status.value, OrderStatus.PROCESSING.value)

    def record_fulfillment(self, quantities, shipment_id=None):
        """Apply shipped quantities ``{order_item_id: qty}`` to the items.

        Shipping is only possible once payment has been captured. Every
        line is validated before any is changed, so an OverShipment leaves
        the order untouched.
        """
        self.validate_fulfillment(quantities)
        status = OrderStatus(self.status)

        now = utcnow()
        with atomic_change(self):
            for item_id, quantity in quantities.items():
                item = self.get_item(item_id)
                item.fulfilled_quantity = (item.fulfilled_quantity or 0) + quantity

            ordered = sum(i.quantity for i in self.items)
            shipped = sum(i.fulfilled_quantity or 0 for i in self.items)
            target = FulfillmentStatus.FULFILLED if shipped == ordered else FulfillmentStatus.PARTIALLY_FULFILLED

            self._transition(StatusAxis.FULFILLMENT, target, f"Shipment {shipment_id}" if shipment_id else None, now)
            if status == OrderStatus.CONFIRMED:
                self._transition(StatusAxis.STATUS, OrderStatus.PROCESSING, "First shipment created", now)
            if target == FulfillmentStatus.FULFILLED:
                self._transition(StatusAxis.STATUS, OrderStatus.SHIPPED, "All items shipped", now)
                self.shipped_at = now

        self.raise_(
            OrderItemsFulfilled(
                order_id=str(self.id),
                shipment_id=str(shipment_id) if shipment_id else None,
                items=json.dumps({str(k): v for k, v in quantities.items()}),
                fulfillment_status=self.fulfillment_status,
                fulfilled_at=now,
            )
        )
        if target == FulfillmentStatus.FULFILLED:
            self.raise_(OrderShipped(order_id=str(self.id), shipped_at=now))

    def mark_delivered(self):
        if self.status == OrderStatus.DELIVERED.value:
            return False
        self._assert_can_transition(StatusAxis.STATUS, OrderStatus.DELIVERED)
        now = utcnow()
        with atomic_change(self):
            self._transition(StatusAxis.STATUS, OrderStatus.DELIVERED, "All shipments delivered", now)
            self.delivered_at = now
        self.raise_(OrderDelivered(order_id=str(self.id), delivered_at=now))
        return True

    def mark_returned(self, reason=None):
        self._assert_can_transition(StatusAxis.STATUS, OrderStatus.RETURNED)
        now = utcnow()
        self._transition(StatusAxis.STATUS, OrderStatus.RETURNED, reason, now)
        self.raise_(OrderReturned(order_id=str(self.id), reason=reason, returned_at=now))

    def mark_disputed(self, reason=None):
        if self.status == OrderStatus.DISPUTED.value:
            return False
        self._assert_can_transition(StatusAxis.STATUS, OrderStatus.DISPUTED)
        now = utcnow()
        self._transition(StatusAxis.STATUS, OrderStatus.DISPUTED, reason, now)
        self.raise_(OrderDisputed(order_id=str(self.id), reason=reason, disputed_at=now))
        return True

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------
    def can_transition(self, axis, target) -> bool:
        enum, table = _AXES[axis]
        current = enum(getattr(self, axis.value))
        return target in table[current]

    def _assert_can_transition(self, axis, target):
        enum, _ = _AXES[axis]
        current = enum(getattr(self, axis.value))
        if not self.can_transition(axis, target):
            raise InvalidStateTransition(axis.value, current.value, target.value)

    def _transition(self, axis, target, reason, now):
        previous = getattr(self, axis.value)
        if previous == target.value:
            return
        self._assert_can_transition(axis, target)
        setattr(self, axis.value, target.value)
        entry = OrderStatusEntry(
            sequence=len(self.status_history) + 1,
            axis=axis.value,
            from_status=previous,
            to_status=target.value,
            reason=reason,
            occurred_at=now,
        )
        self.add_status_history(entry)
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                axis=axis.value,
                from_status=previous,
                to_status=target.value,
                sequence=entry.sequence,
                reason=reason,
                changed_at=now,
            )
        )

    def _mark_reservations(self, from_state, to_state):
        for reservation in self.reservations:
            if reservation.state == from_state.value:
                reservation.state = to_state.value
