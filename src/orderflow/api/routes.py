"""FastAPI routes — thin adapters from HTTP onto the application services."""

import functools

from fastapi import APIRouter, Header, HTTPException
from protean.utils.globals import current_domain

from orderflow import config
from orderflow.api.schemas import (
    AddCartItemRequest,
    AdjustStockRequest,
    CancelOrderRequest,
    CarrierWebhookRequest,
    CartItemSchema,
    CartResponse,
    CheckoutRequest,
    ConfigureGatewayRequest,
    CouponQuoteResponse,
    CouponResponse,
    CreateCartRequest,
    CreateCouponRequest,
    CreateShipmentRequest,
    GatewayConfigResponse,
    InitializeStockRequest,
    InventoryRecordResponse,
    InventoryTransactionResponse,
    LedgerReconciliationResponse,
    OrderItemSchema,
    OrderResponse,
    PaymentResponse,
    QuoteCouponRequest,
    ReconciliationResponse,
    RefundRequest,
    RefundResponse,
    ShipmentItemSchema,
    ShipmentResponse,
    ShipmentStatusEntrySchema,
    StatusEntrySchema,
    StatusResponse,
    UpdateCartItemRequest,
    UpdateShipmentStatusRequest,
    WebhookRequest,
)
from orderflow.cart.manager import CartManager
from orderflow.checkout.orchestrator import OrderOrchestrator
from orderflow.checkout.reconciliation import PaymentReconciler
from orderflow.checkout.webhooks import WebhookIngestor
from orderflow.coupon.evaluator import CouponEvaluator
from orderflow.coupon.redemption import CartLine
from orderflow.domain import orderflow
from orderflow.gateway import get_gateway
from orderflow.gateway.fake_adapter import FakeGateway
from orderflow.inventory.ledger import InventoryLedger
from orderflow.payment.payment import Payment
from orderflow.shipment.tracker import ShipmentTracker


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------
def _record_response(record) -> InventoryRecordResponse:
    return InventoryRecordResponse(
        inventory_record_id=str(record.id),
        product_id=str(record.product_id),
        variant_id=str(record.variant_id),
        warehouse_id=str(record.warehouse_id),
        available=record.available,
        reserved=record.reserved,
        free=record.free,
    )


def _coupon_response(coupon) -> CouponResponse:
    return CouponResponse(
        coupon_id=str(coupon.id),
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        usage_count=coupon.usage_count,
        usage_limit=coupon.usage_limit,
        is_active=coupon.is_active,
    )


def _cart_response(cart) -> CartResponse:
    return CartResponse(
        cart_id=str(cart.id),
        customer_id=str(cart.customer_id) if cart.customer_id else None,
        session_id=cart.session_id,
        currency=cart.currency,
        items=[
            CartItemSchema(
                product_id=str(i.product_id),
                variant_id=str(i.variant_id),
                quantity=i.quantity,
                unit_price=i.unit_price,
                title=i.title,
                category=i.category,
            )
            for i in cart.items
        ],
        subtotal=float(cart.subtotal),
        expires_at=cart.expires_at,
    )


def _order_response(order) -> OrderResponse:
    pricing = order.pricing
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        fulfillment_status=order.fulfillment_status,
        subtotal=pricing.subtotal,
        discount_total=pricing.discount_total,
        tax_total=pricing.tax_total,
        shipping_total=pricing.shipping_total,
        grand_total=pricing.grand_total,
        currency=order.currency,
        coupon_code=order.coupon_code,
        payment_id=str(order.payment_id) if order.payment_id else None,
        items=[
            OrderItemSchema(
                order_item_id=str(i.id),
                product_id=str(i.product_id),
                variant_id=str(i.variant_id),
                quantity=i.quantity,
                unit_price=i.unit_price,
                fulfilled_quantity=i.fulfilled_quantity or 0,
            )
            for i in order.items
        ],
        status_history=[
            StatusEntrySchema(
                sequence=e.sequence,
                axis=e.axis,
                from_status=e.from_status,
                to_status=e.to_status,
                reason=e.reason,
                occurred_at=e.occurred_at,
            )
            for e in sorted(order.status_history, key=lambda e: e.sequence)
        ],
    )


def _refund_response(payment, refund) -> RefundResponse:
    return RefundResponse(
        refund_id=str(refund.id),
        payment_id=str(payment.id),
        amount=refund.amount,
        reason=refund.reason,
        status=refund.status,
        provider_refund_id=refund.provider_refund_id,
    )


def _payment_response(payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=str(payment.id),
        order_id=str(payment.order_id),
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        provider_reference=payment.provider_reference,
        refunded_total=float(payment.refunded_total),
        refundable_amount=float(payment.refundable_amount),
        refunds=[_refund_response(payment, r) for r in payment.refunds],
    )


def _shipment_response(shipment) -> ShipmentResponse:
    return ShipmentResponse(
        shipment_id=str(shipment.id),
        order_id=str(shipment.order_id),
        carrier=shipment.carrier,
        tracking_number=shipment.tracking_number,
        status=shipment.status,
        items=[
            ShipmentItemSchema(order_item_id=str(i.order_item_id), quantity_shipped=i.quantity_shipped)
            for i in shipment.items
        ],
        status_history=[
            ShipmentStatusEntrySchema(
                sequence=e.sequence,
                from_status=e.from_status,
                to_status=e.to_status,
                location=e.location,
                description=e.description,
                occurred_at=e.occurred_at,
            )
            for e in shipment.ordered_history()
        ],
    )


def _orchestrator() -> OrderOrchestrator:
    return OrderOrchestrator()


def _blocking(handler):
    """Mark a handler that takes locks or calls the gateway or carrier.

    It is declared as a plain function so FastAPI runs it on the threadpool
    instead of the event loop, and it pushes its own domain context there.
    """

    @functools.wraps(handler)
    def wrapper(*args, **kwargs):
        with orderflow.domain_context():
            return handler(*args, **kwargs)

    return wrapper


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("", status_code=201, response_model=InventoryRecordResponse)
@_blocking
def initialize_stock(body: InitializeStockRequest) -> InventoryRecordResponse:
    """Create the stock record for a (product, variant, warehouse)."""
    record = InventoryLedger().initialize(
        body.product_id,
        body.variant_id,
        body.warehouse_id,
        available=body.available,
        reorder_point=body.reorder_point,
    )
    return _record_response(record)


@inventory_router.get("/{product_id}/{variant_id}", response_model=list[InventoryRecordResponse])
async def list_stock(product_id: str, variant_id: str) -> list[InventoryRecordResponse]:
    return [_record_response(r) for r in InventoryLedger().find_records(product_id, variant_id)]


@inventory_router.get("/{product_id}/{variant_id}/{warehouse_id}", response_model=InventoryRecordResponse)
async def get_stock(product_id: str, variant_id: str, warehouse_id: str) -> InventoryRecordResponse:
    record = InventoryLedger().record(product_id, variant_id, warehouse_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Inventory record not found")
    return _record_response(record)


@inventory_router.post("/{product_id}/{variant_id}/{warehouse_id}/adjust", response_model=InventoryRecordResponse)
@_blocking
def adjust_stock(
    product_id: str, variant_id: str, warehouse_id: str, body: AdjustStockRequest
) -> InventoryRecordResponse:
    """Manual correction: receiving, damage write-off, cycle count."""
    record = InventoryLedger().adjust(
        product_id,
        variant_id,
        warehouse_id,
        body.delta,
        reason=body.reason,
        reference_id=body.reference_id,
    )
    return _record_response(record)


@inventory_router.get(
    "/{product_id}/{variant_id}/{warehouse_id}/transactions",
    response_model=list[InventoryTransactionResponse],
)
async def list_transactions(product_id: str, variant_id: str, warehouse_id: str):
    return [
        InventoryTransactionResponse(
            sequence=t.sequence,
            transaction_type=t.transaction_type,
            quantity_change=t.quantity_change,
            available_before=t.available_before,
            available_after=t.available_after,
            reserved_before=t.reserved_before,
            reserved_after=t.reserved_after,
            reference_kind=t.reference_kind,
            reference_id=t.reference_id,
            reason=t.reason,
            recorded_at=t.recorded_at,
        )
        for t in InventoryLedger().transactions(product_id, variant_id, warehouse_id)
    ]


@inventory_router.get(
    "/{product_id}/{variant_id}/{warehouse_id}/reconcile",
    response_model=LedgerReconciliationResponse,
)
async def reconcile_stock(product_id: str, variant_id: str, warehouse_id: str) -> LedgerReconciliationResponse:
    result = InventoryLedger().reconcile(product_id, variant_id, warehouse_id)
    return LedgerReconciliationResponse(
        inventory_record_id=result.inventory_record_id,
        consistent=result.consistent,
        available=result.available,
        reserved=result.reserved,
        replayed_available=result.replayed_available,
        replayed_reserved=result.replayed_reserved,
    )


# ---------------------------------------------------------------------------
# Coupon Router
# ---------------------------------------------------------------------------
coupon_router = APIRouter(prefix="/coupons", tags=["coupons"])


@coupon_router.post("", status_code=201, response_model=CouponResponse)
@_blocking
def create_coupon(body: CreateCouponRequest) -> CouponResponse:
    options = body.model_dump(exclude={"code", "name", "discount_type", "discount_value"}, exclude_none=True)
    coupon = CouponEvaluator().create_coupon(
        body.code,
        body.name,
        body.discount_type,
        body.discount_value,
        **options,
    )
    return _coupon_response(coupon)


@coupon_router.get("/{code}", response_model=CouponResponse)
async def get_coupon(code: str) -> CouponResponse:
    return _coupon_response(CouponEvaluator().get(code))


@coupon_router.post("/{code}/quote", response_model=CouponQuoteResponse)
async def quote_coupon(code: str, body: QuoteCouponRequest) -> CouponQuoteResponse:
    """Price a coupon against a basket without consuming a use."""
    quote = CouponEvaluator().quote(
        code,
        body.order_subtotal,
        cart_contents=[CartLine(**line.model_dump()) for line in body.items] or None,
        customer_id=body.customer_id,
    )
    return CouponQuoteResponse(
        code=quote.code,
        discount_amount=float(quote.discount_amount),
        free_shipping=quote.free_shipping,
    )


@coupon_router.put("/{code}/deactivate", response_model=StatusResponse)
@_blocking
def deactivate_coupon(code: str) -> StatusResponse:
    CouponEvaluator().deactivate(code)
    return StatusResponse(status="deactivated")


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("", status_code=201, response_model=CartResponse)
@_blocking
def create_cart(body: CreateCartRequest) -> CartResponse:
    cart = CartManager().create_cart(
        customer_id=body.customer_id,
        session_id=body.session_id,
        currency=body.currency,
    )
    return _cart_response(cart)


@cart_router.get("/{cart_id}", response_model=CartResponse)
async def get_cart(cart_id: str) -> CartResponse:
    return _cart_response(CartManager().get_cart(cart_id))


@cart_router.post("/{cart_id}/items", response_model=CartResponse)
@_blocking
def add_cart_item(cart_id: str, body: AddCartItemRequest) -> CartResponse:
    cart = CartManager().add_item(cart_id, **body.model_dump())
    return _cart_response(cart)


@cart_router.put("/{cart_id}/items/{product_id}/{variant_id}", response_model=CartResponse)
@_blocking
def update_cart_item(cart_id: str, product_id: str, variant_id: str, body: UpdateCartItemRequest):
    cart = CartManager().update_quantity(cart_id, product_id, variant_id, body.quantity)
    return _cart_response(cart)


@cart_router.delete("/{cart_id}/items/{product_id}/{variant_id}", response_model=CartResponse)
@_blocking
def remove_cart_item(cart_id: str, product_id: str, variant_id: str) -> CartResponse:
    return _cart_response(CartManager().remove_item(cart_id, product_id, variant_id))


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("/checkout", status_code=201, response_model=OrderResponse)
@_blocking
def checkout(body: CheckoutRequest) -> OrderResponse:
    """Convert a cart into a paid order.

    A capture that times out answers 202 with the pending order id; the
    reconciliation job settles it later.
    """
    order = _orchestrator().place_order(
        body.cart_id,
        shipping_address=body.shipping_address.model_dump() if body.shipping_address else None,
        coupon_code=body.coupon_code,
        warehouse_preference=body.warehouse_preference,
        idempotency_key=body.idempotency_key,
        timeout=body.timeout,
    )
    return _order_response(order)


@order_router.post("/reconcile", response_model=ReconciliationResponse)
@_blocking
def reconcile_payments() -> ReconciliationResponse:
    report = PaymentReconciler(_orchestrator()).reconcile()
    return ReconciliationResponse(
        confirmed=report.confirmed,
        cancelled=report.cancelled,
        abandoned=report.abandoned,
        still_pending=report.still_pending,
        errors=report.errors,
    )


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(_orchestrator().get_order(order_id))


@order_router.put("/{order_id}/cancel", response_model=OrderResponse)
@_blocking
def cancel_order(order_id: str, body: CancelOrderRequest) -> OrderResponse:
    return _order_response(_orchestrator().cancel_order(order_id, reason=body.reason))


@order_router.post("/{order_id}/refunds", status_code=201, response_model=RefundResponse)
@_blocking
def refund_order(order_id: str, body: RefundRequest) -> RefundResponse:
    orchestrator = _orchestrator()
    refund = orchestrator.refund_order(order_id, body.amount, reason=body.reason)
    payment = current_domain.repository_for(Payment).get(str(orchestrator.get_order(order_id).payment_id))
    return _refund_response(payment, refund)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=StatusResponse)
@_blocking
def payment_webhook(body: WebhookRequest, x_gateway_signature: str = Header(default="")) -> StatusResponse:
    """Gateway notification; redeliveries are acknowledged without effect."""
    outcome = WebhookIngestor(_orchestrator()).ingest(
        body.event_type,
        body.provider_reference,
        payload=body.payload,
        signature=x_gateway_signature,
    )
    return StatusResponse(status=outcome)


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if config.is_production():
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        capture_delay=body.capture_delay,
        refunds_succeed=body.refunds_succeed,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
        capture_delay=gateway.capture_delay,
        refunds_succeed=gateway.refunds_succeed,
    )


@payment_router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: str) -> PaymentResponse:
    return _payment_response(current_domain.repository_for(Payment).get(payment_id))


@payment_router.post("/{payment_id}/refunds", status_code=201, response_model=RefundResponse)
@_blocking
def refund_payment(payment_id: str, body: RefundRequest) -> RefundResponse:
    refund = _orchestrator().refunds.refund(payment_id, body.amount, reason=body.reason)
    payment = current_domain.repository_for(Payment).get(payment_id)
    return _refund_response(payment, refund)


# ---------------------------------------------------------------------------
# Shipment Router
# ---------------------------------------------------------------------------
shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.post("", status_code=201, response_model=ShipmentResponse)
@_blocking
def create_shipment(body: CreateShipmentRequest) -> ShipmentResponse:
    shipment = ShipmentTracker().create_shipment(
        body.order_id,
        [(line.order_item_id, line.quantity) for line in body.items],
        carrier=body.carrier,
        tracking_number=body.tracking_number,
    )
    return _shipment_response(shipment)


@shipment_router.post("/carrier/webhook", response_model=ShipmentResponse)
@_blocking
def carrier_webhook(body: CarrierWebhookRequest, x_carrier_signature: str = Header(default="")):
    shipment = ShipmentTracker().ingest_carrier_update(
        body.tracking_number,
        body.status,
        location=body.location,
        description=body.description,
        payload=body.model_dump_json(),
        signature=x_carrier_signature,
    )
    return _shipment_response(shipment)


@shipment_router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(shipment_id: str) -> ShipmentResponse:
    return _shipment_response(ShipmentTracker().get_shipment(shipment_id))


@shipment_router.put("/{shipment_id}/status", response_model=ShipmentResponse)
@_blocking
def update_shipment_status(shipment_id: str, body: UpdateShipmentStatusRequest) -> ShipmentResponse:
    shipment = ShipmentTracker().update_status(
        shipment_id,
        body.status,
        location=body.location,
        description=body.description,
    )
    return _shipment_response(shipment)
