"""Concurrent checkouts: customers racing for the last units, and retried submits.

The gateway holds captures open so the ledger and the order store can be
inspected while a checkout is outstanding.
"""

import threading
import time

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from orderflow.domain import orderflow
from orderflow.errors import InsufficientStock
from orderflow.inventory.record import TransactionType
from orderflow.order.order import Order, OrderStatus, PaymentStatus
from orderflow.payment.payment import Payment


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestLastUnitsRace:
    def test_exactly_one_checkout_wins(self, orchestrator, stock, cart_with, ledger, gateway):
        stock(2)
        carts = [
            cart_with({"product_id": "prod-001", "variant_id": "var-001", "quantity": 2, "unit_price": 30.0}),
            cart_with(
                {"product_id": "prod-001", "variant_id": "var-001", "quantity": 2, "unit_price": 30.0},
                customer_id="cust-002",
            ),
        ]

        capture_started = threading.Event()
        release_capture = threading.Event()

        def hold_capture(**kwargs):
            capture_started.set()
            release_capture.wait(timeout=5)

        gateway.before_capture = hold_capture

        barrier = threading.Barrier(2)
        results = {}

        def checkout(cart):
            with orderflow.domain_context():
                barrier.wait()
                try:
                    results[str(cart.id)] = orchestrator.place_order(str(cart.id), timeout=10)
                except InsufficientStock as exc:
                    results[str(cart.id)] = exc

        threads = [threading.Thread(target=checkout, args=(cart,)) for cart in carts]
        for thread in threads:
            thread.start()

        assert capture_started.wait(timeout=5)
        assert _wait_until(lambda: any(isinstance(r, InsufficientStock) for r in results.values()))

        # The winner holds both units; the loser took nothing.
        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 2
        assert record.reserved == 2

        release_capture.set()
        for thread in threads:
            thread.join(timeout=10)

        orders = [r for r in results.values() if not isinstance(r, InsufficientStock)]
        losers = [r for r in results.values() if isinstance(r, InsufficientStock)]
        assert len(orders) == 1
        assert len(losers) == 1
        assert orders[0].status == OrderStatus.CONFIRMED.value

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 0
        assert record.reserved == 0
        assert ledger.reconcile("prod-001", "var-001", "wh-001").consistent
        assert len(current_domain.repository_for(Order)._dao.query.all().items) == 1


class TestConcurrentRetries:
    """Retries of one checkout must never produce a second order or charge."""

    def _hold_captures(self, gateway):
        capture_started = threading.Event()
        release_capture = threading.Event()

        def hold_capture(**kwargs):
            capture_started.set()
            release_capture.wait(timeout=5)

        gateway.before_capture = hold_capture
        return capture_started, release_capture

    def test_same_idempotency_key_twice_places_one_order(self, orchestrator, stock, cart_with, ledger, gateway):
        stock(4)
        cart = cart_with({"product_id": "prod-001", "variant_id": "var-001", "quantity": 2, "unit_price": 30.0})
        capture_started, release_capture = self._hold_captures(gateway)

        barrier = threading.Barrier(2)
        results = []

        def checkout():
            with orderflow.domain_context():
                barrier.wait()
                results.append(orchestrator.place_order(str(cart.id), idempotency_key="retry-001", timeout=10))

        threads = [threading.Thread(target=checkout) for _ in range(2)]
        for thread in threads:
            thread.start()

        # The retry sees the pending order while the first capture is outstanding.
        assert capture_started.wait(timeout=5)
        assert _wait_until(lambda: len(results) == 1)
        assert results[0].payment_status == PaymentStatus.PENDING.value

        release_capture.set()
        for thread in threads:
            thread.join(timeout=10)

        assert len(results) == 2
        assert results[0].id == results[1].id
        assert len(current_domain.repository_for(Order)._dao.query.all().items) == 1
        assert len(current_domain.repository_for(Payment)._dao.query.all().items) == 1
        assert len(gateway.calls_to("capture")) == 1

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert (record.available, record.reserved) == (2, 0)
        transactions = ledger.transactions("prod-001", "var-001", "wh-001")
        assert [t.transaction_type for t in transactions].count(TransactionType.COMMIT.value) == 1

    def test_second_checkout_of_a_cart_in_flight_is_rejected(self, orchestrator, stock, cart_with, ledger, gateway):
        stock(4)
        cart = cart_with({"product_id": "prod-001", "variant_id": "var-001", "quantity": 2, "unit_price": 30.0})
        capture_started, release_capture = self._hold_captures(gateway)
        results = {}

        def checkout():
            with orderflow.domain_context():
                results["first"] = orchestrator.place_order(str(cart.id), idempotency_key="first", timeout=10)

        thread = threading.Thread(target=checkout)
        thread.start()
        assert capture_started.wait(timeout=5)

        with pytest.raises(ValidationError) as exc:
            orchestrator.place_order(str(cart.id), idempotency_key="second")
        assert "cart" in exc.value.messages

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.reserved == 2

        release_capture.set()
        thread.join(timeout=10)

        assert results["first"].status == OrderStatus.CONFIRMED.value
        assert len(current_domain.repository_for(Order)._dao.query.all().items) == 1
        assert len(gateway.calls_to("capture")) == 1
        record = ledger.record("prod-001", "var-001", "wh-001")
        assert (record.available, record.reserved) == (2, 0)
