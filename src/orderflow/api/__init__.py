from orderflow.api.errors import register_error_handlers
from orderflow.api.routes import (
    cart_router,
    coupon_router,
    inventory_router,
    order_router,
    payment_router,
    shipment_router,
)

__all__ = [
    "register_error_handlers",
    "inventory_router",
    "coupon_router",
    "cart_router",
    "order_router",
    "payment_router",
    "shipment_router",
]
