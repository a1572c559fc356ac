import os
from pathlib import Path

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config environment before the domain is imported."""
    os.environ["PROTEAN_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)


@pytest.fixture(scope="session")
def orderflow_bed():
    from orderflow.domain import orderflow

    bed = DomainFixture(orderflow)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(orderflow_bed):
    from orderflow.carrier import reset_carrier
    from orderflow.gateway import reset_gateway

    reset_gateway()
    reset_carrier()

    with orderflow_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()

    reset_gateway()
    reset_carrier()


# ---------------------------------------------------------------------------
# Adapters and services
# ---------------------------------------------------------------------------
@pytest.fixture()
def gateway():
    from orderflow.gateway import get_gateway

    return get_gateway()


@pytest.fixture()
def carrier():
    from orderflow.carrier import get_carrier

    return get_carrier()


@pytest.fixture()
def ledger():
    from orderflow.inventory.ledger import InventoryLedger

    return InventoryLedger()


@pytest.fixture()
def coupons():
    from orderflow.coupon.evaluator import CouponEvaluator

    return CouponEvaluator()


@pytest.fixture()
def carts():
    from orderflow.cart.manager import CartManager

    return CartManager()


@pytest.fixture()
def orchestrator(ledger, coupons, carts):
    from orderflow.checkout.orchestrator import OrderOrchestrator

    return OrderOrchestrator(ledger=ledger, coupons=coupons, carts=carts)


@pytest.fixture()
def tracker():
    from orderflow.shipment.tracker import ShipmentTracker

    return ShipmentTracker()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------
@pytest.fixture()
def stock(ledger):
    """Factory: start tracking a variant at a warehouse with ``available`` units."""

    def _stock(available, product_id="prod-001", variant_id="var-001", warehouse_id="wh-001", reorder_point=0):
        return ledger.initialize(product_id, variant_id, warehouse_id, available=available, reorder_point=reorder_point)

    return _stock


@pytest.fixture()
def cart_with(carts):
    """Factory: a customer cart holding the given lines.

    Each line is a dict of ``CartManager.add_item`` keyword arguments.
    """

    def _cart(*lines, customer_id="cust-001"):
        cart = carts.create_cart(customer_id=customer_id)
        for entry in lines:
            carts.add_item(str(cart.id), **entry)
        return carts.get_cart(str(cart.id))

    return _cart


def _line(quantity=1, unit_price=25.0, product_id="prod-001", variant_id="var-001", **extra):
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "quantity": quantity,
        "unit_price": unit_price,
        **extra,
    }


@pytest.fixture()
def checkout(orchestrator, stock, cart_with):
    """Factory: stock one variant and check out a single-line cart for it.

    Stock is initialized on each call, so use it once per test.
    """

    def _checkout(quantity=1, unit_price=25.0, available=None, **options):
        stock(quantity if available is None else available)
        cart = cart_with(_line(quantity=quantity, unit_price=unit_price))
        return orchestrator.place_order(str(cart.id), **options)

    return _checkout
