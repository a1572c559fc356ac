"""Order placement — command and handler.

Creates the Order record from a priced cart snapshot once every line has
been reserved. Payment capture is not part of this command.
"""

import json

from protean import handle
from protean.fields import Boolean, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order, OrderPricing


@orderflow.command(part_of="Order")
class PlaceOrder:
    order_id = Identifier(required=True)
    customer_id = Identifier()
    session_id = String(max_length=255)
    cart_id = Identifier()
    items = Text(required=True)  # JSON: list of item dicts
    reservations = Text()  # JSON: list of reservation dicts
    shipping_address = Text()  # JSON: address dict
    subtotal = Float(required=True, min_value=0.0)
    discount_total = Float(default=0.0)
    tax_total = Float(default=0.0)
    shipping_total = Float(default=0.0)
    currency = String(max_length=3, default="USD")
    coupon_code = String(max_length=50)
    free_shipping = Boolean(default=False)
    idempotency_key = String(max_length=255)


@orderflow.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        pricing = OrderPricing.compute(
            subtotal=command.subtotal,
            discount=command.discount_total or 0.0,
            tax=command.tax_total or 0.0,
            shipping=command.shipping_total or 0.0,
        )
        order = Order.place(
            order_id=command.order_id,
            items_data=json.loads(command.items),
            reservations_data=json.loads(command.reservations) if command.reservations else [],
            pricing=pricing,
            shipping_address=json.loads(command.shipping_address) if command.shipping_address else None,
            customer_id=command.customer_id,
            session_id=command.session_id,
            cart_id=command.cart_id,
            currency=command.currency or "USD",
            coupon_code=command.coupon_code,
            free_shipping=command.free_shipping,
            idempotency_key=command.idempotency_key,
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)
