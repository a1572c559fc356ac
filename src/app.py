"""Orderflow FastAPI application.

Processes commands synchronously via HTTP. Every request runs inside the
orderflow domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay from domain.toml.
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from orderflow.domain import orderflow
from orderflow.utils.logging import add_context, clear_context

orderflow.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Orderflow API",
    description="Order fulfillment and inventory reservation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the orderflow domain context and bind the request to every log line."""
    clear_context()
    add_context(method=request.method, path=request.url.path)
    try:
        with orderflow.domain_context():
            return await call_next(request)
    finally:
        clear_context()


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from orderflow.api import (  # noqa: E402
    cart_router,
    coupon_router,
    inventory_router,
    order_router,
    payment_router,
    register_error_handlers,
    shipment_router,
)

app.include_router(inventory_router)
app.include_router(coupon_router)
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(shipment_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": orderflow.name})
