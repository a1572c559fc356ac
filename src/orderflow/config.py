"""Service tunables read from the environment.

Protean's own configuration (databases, brokers, processing mode) lives in
``domain.toml``. The values here are orchestration policy knobs that
operators adjust per deployment without touching the domain config.
"""

import os
from decimal import Decimal


def payment_capture_timeout() -> float:
    """Seconds to wait for the gateway before treating a capture as ambiguous."""
    return float(os.environ.get("PAYMENT_CAPTURE_TIMEOUT_SECONDS", "30"))


def reconciliation_max_age_minutes() -> int:
    """Age after which a pending order unknown to the gateway is abandoned."""
    return int(os.environ.get("RECONCILIATION_MAX_AGE_MINUTES", "60"))


def cart_ttl_days() -> int:
    return int(os.environ.get("CART_TTL_DAYS", "30"))


def tax_rate() -> Decimal:
    return Decimal(os.environ.get("TAX_RATE", "0"))


def shipping_flat_rate() -> Decimal:
    return Decimal(os.environ.get("SHIPPING_FLAT_RATE", "0"))


def default_currency() -> str:
    return os.environ.get("DEFAULT_CURRENCY", "USD")


def is_production() -> bool:
    return os.environ.get("PROTEAN_ENV") == "production"
