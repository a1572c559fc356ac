"""Carrier factory.

The tracker books parcels through whichever adapter ``get_carrier()``
returns. CARRIER_ADAPTER selects it; ``fake`` is the only adapter bundled.
"""

import os

from orderflow.carrier.fake_adapter import FakeCarrier
from orderflow.carrier.port import CarrierPort

_ADAPTERS = {"fake": FakeCarrier}

_active_carrier: CarrierPort | None = None


def get_carrier() -> CarrierPort:
    global _active_carrier
    if _active_carrier is None:
        name = os.environ.get("CARRIER_ADAPTER", "fake")
        try:
            _active_carrier = _ADAPTERS[name]()
        except KeyError:
            raise ValueError(f"Unknown carrier adapter: {name}") from None
    return _active_carrier


def set_carrier(carrier: CarrierPort) -> None:
    global _active_carrier
    _active_carrier = carrier


def reset_carrier() -> None:
    global _active_carrier
    _active_carrier = None
