"""HTTP mapping for the workflow's error taxonomy.

Protean's ``register_exception_handlers`` turns ``ValidationError`` into 400
and ``ObjectNotFoundError`` into 404. The handlers here refine that for the
errors a client is expected to react to differently; Starlette resolves
handlers along the exception's MRO, so the most specific class wins.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from orderflow.errors import (
    AmbiguousPaymentOutcome,
    CouponError,
    InsufficientStock,
    InvalidWebhookSignature,
    PaymentCaptureFailed,
    RefundDeclined,
)

logger = structlog.get_logger(__name__)

_STATUS_CODES = {
    InsufficientStock: 409,
    CouponError: 422,
    PaymentCaptureFailed: 402,
    RefundDeclined: 402,
    InvalidWebhookSignature: 401,
}


def _error_handler(status_code):
    async def handler(request: Request, exc) -> JSONResponse:
        logger.warning(
            "Request rejected",
            path=request.url.path,
            error=type(exc).__name__,
            status_code=status_code,
        )
        return JSONResponse(status_code=status_code, content={"error": exc.messages})

    return handler


async def _ambiguous_payment_handler(request: Request, exc: AmbiguousPaymentOutcome) -> JSONResponse:
    return JSONResponse(
        status_code=202,
        content={"order_id": exc.order_id, "idempotency_key": exc.idempotency_key, "status": "pending"},
    )


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    for exc_class, status_code in _STATUS_CODES.items():
        app.add_exception_handler(exc_class, _error_handler(status_code))
    app.add_exception_handler(AmbiguousPaymentOutcome, _ambiguous_payment_handler)
