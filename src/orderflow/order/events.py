"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from orderflow.domain import orderflow


@orderflow.event(part_of="Order")
class OrderPlaced:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier()
    items = Text(required=True)  # JSON: list of item dicts
    subtotal = Float(required=True)
    discount_total = Float()
    tax_total = Float()
    shipping_total = Float()
    grand_total = Float(required=True)
    currency = String(max_length=3)
    coupon_code = String()
    placed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderConfirmed:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier()
    provider_reference = String()
    amount = Float(required=True)
    confirmed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderPaymentFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier()
    reason = String(required=True)
    failed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    cancelled_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderItemsFulfilled:
    __version__ = 1

    order_id = Identifier(required=True)
    shipment_id = Identifier()
    items = Text(required=True)  # JSON: {order_item_id: quantity}
    fulfillment_status = String(required=True)
    fulfilled_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    shipped_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    delivered_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderReturned:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String()
    returned_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderDisputed:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String()
    disputed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderRefundRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    refunded_total = Float(required=True)
    payment_amount = Float(required=True)
    payment_status = String(required=True)
    recorded_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderStatusChanged:
    """Emitted for every transition on any of the three state axes."""

    __version__ = 1

    order_id = Identifier(required=True)
    axis = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    sequence = Integer(required=True)
    reason = String()
    changed_at = DateTime(required=True)
