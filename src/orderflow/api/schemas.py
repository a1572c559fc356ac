"""Pydantic request/response schemas for the HTTP API.

These are the external contracts; they are kept separate from the internal
Protean commands so either side can change shape independently.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    street: str
    city: str
    state: str | None = None
    postal_code: str
    country: str


class CartLineSchema(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    category: str | None = None


class StatusResponse(BaseModel):
    status: str


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
class InitializeStockRequest(BaseModel):
    product_id: str
    variant_id: str
    warehouse_id: str
    available: int = Field(ge=0)
    reorder_point: int = Field(default=10, ge=0)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "product_id": "prod-001",
                    "variant_id": "var-001",
                    "warehouse_id": "wh-east",
                    "available": 100,
                    "reorder_point": 10,
                }
            ]
        }
    }


class AdjustStockRequest(BaseModel):
    delta: int
    reason: str
    reference_id: str | None = None


class InventoryRecordResponse(BaseModel):
    inventory_record_id: str
    product_id: str
    variant_id: str
    warehouse_id: str
    available: int
    reserved: int
    free: int


class InventoryTransactionResponse(BaseModel):
    sequence: int
    transaction_type: str
    quantity_change: int
    available_before: int
    available_after: int
    reserved_before: int
    reserved_after: int
    reference_kind: str | None = None
    reference_id: str | None = None
    reason: str | None = None
    recorded_at: datetime


class LedgerReconciliationResponse(BaseModel):
    inventory_record_id: str
    consistent: bool
    available: int
    reserved: int
    replayed_available: int
    replayed_reserved: int


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class CreateCouponRequest(BaseModel):
    code: str
    name: str
    discount_type: str  # Percentage, Fixed_Amount, Free_Shipping
    discount_value: float = Field(default=0.0, ge=0)
    description: str | None = None
    max_discount_amount: float | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    per_user_limit: int = Field(default=1, ge=1)
    minimum_order_amount: float = Field(default=0.0, ge=0)
    applicable_categories: list[str] | None = None
    applicable_products: list[str] | None = None
    excluded_products: list[str] | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None


class CouponResponse(BaseModel):
    coupon_id: str
    code: str
    discount_type: str
    discount_value: float
    usage_count: int
    usage_limit: int | None = None
    is_active: bool


class QuoteCouponRequest(BaseModel):
    order_subtotal: float = Field(ge=0)
    items: list[CartLineSchema] = []
    customer_id: str | None = None


class CouponQuoteResponse(BaseModel):
    code: str
    discount_amount: float
    free_shipping: bool


# ---------------------------------------------------------------------------
# Carts
# ---------------------------------------------------------------------------
class CreateCartRequest(BaseModel):
    customer_id: str | None = None
    session_id: str | None = None
    currency: str | None = None


class AddCartItemRequest(BaseModel):
    product_id: str
    variant_id: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    title: str | None = None
    category: str | None = None


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(ge=0)


class CartItemSchema(BaseModel):
    product_id: str
    variant_id: str
    quantity: int
    unit_price: float
    title: str | None = None
    category: str | None = None


class CartResponse(BaseModel):
    cart_id: str
    customer_id: str | None = None
    session_id: str | None = None
    currency: str
    items: list[CartItemSchema]
    subtotal: float
    expires_at: datetime | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    cart_id: str
    shipping_address: AddressSchema | None = None
    coupon_code: str | None = None
    warehouse_preference: list[str] | None = None
    idempotency_key: str | None = None
    timeout: float | None = Field(default=None, gt=0)


class OrderItemSchema(BaseModel):
    order_item_id: str
    product_id: str
    variant_id: str
    quantity: int
    unit_price: float
    fulfilled_quantity: int


class StatusEntrySchema(BaseModel):
    sequence: int
    axis: str
    from_status: str
    to_status: str
    reason: str | None = None
    occurred_at: datetime


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    fulfillment_status: str
    subtotal: float
    discount_total: float
    tax_total: float
    shipping_total: float
    grand_total: float
    currency: str
    coupon_code: str | None = None
    payment_id: str | None = None
    items: list[OrderItemSchema]
    status_history: list[StatusEntrySchema]


class CancelOrderRequest(BaseModel):
    reason: str = "Cancelled by customer"


class PendingPaymentResponse(BaseModel):
    order_id: str
    idempotency_key: str
    status: str = "pending"


class ReconciliationResponse(BaseModel):
    confirmed: list[str]
    cancelled: list[str]
    abandoned: list[str]
    still_pending: list[str]
    errors: dict[str, str]


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class RefundRequest(BaseModel):
    amount: float = Field(gt=0)
    reason: str = "customer_request"


class RefundResponse(BaseModel):
    refund_id: str
    payment_id: str
    amount: float
    reason: str
    status: str
    provider_refund_id: str | None = None


class PaymentResponse(BaseModel):
    payment_id: str
    order_id: str
    amount: float
    currency: str
    status: str
    provider_reference: str | None = None
    refunded_total: float
    refundable_amount: float
    refunds: list[RefundResponse]


class WebhookRequest(BaseModel):
    event_type: str
    provider_reference: str | None = None
    payload: dict = {}


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"
    capture_delay: float = Field(default=0.0, ge=0)
    refunds_succeed: bool = True


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
    capture_delay: float
    refunds_succeed: bool


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------
class ShipmentLineSchema(BaseModel):
    order_item_id: str
    quantity: int = Field(ge=1)


class CreateShipmentRequest(BaseModel):
    order_id: str
    carrier: str
    items: list[ShipmentLineSchema]
    tracking_number: str | None = None


class UpdateShipmentStatusRequest(BaseModel):
    status: str
    location: str | None = None
    description: str | None = None


class CarrierWebhookRequest(BaseModel):
    tracking_number: str
    status: str
    location: str | None = None
    description: str | None = None


class ShipmentItemSchema(BaseModel):
    order_item_id: str
    quantity_shipped: int


class ShipmentStatusEntrySchema(BaseModel):
    sequence: int
    from_status: str | None = None
    to_status: str
    location: str | None = None
    description: str | None = None
    occurred_at: datetime


class ShipmentResponse(BaseModel):
    shipment_id: str
    order_id: str
    carrier: str
    tracking_number: str | None = None
    status: str
    items: list[ShipmentItemSchema]
    status_history: list[ShipmentStatusEntrySchema]
