"""Concurrent reservations against one inventory key never oversell.

Each worker pushes its own domain context, the way a request thread would.
"""

import threading

from orderflow.domain import orderflow
from orderflow.errors import InsufficientStock


def _race(workers, target):
    barrier = threading.Barrier(len(workers))
    results = {}

    def run(name, args):
        with orderflow.domain_context():
            barrier.wait()
            try:
                results[name] = target(*args)
            except InsufficientStock as exc:
                results[name] = exc

    threads = [threading.Thread(target=run, args=(name, args)) for name, args in workers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results


class TestConcurrentReservations:
    def test_two_checkouts_for_the_last_two_units(self, ledger, stock):
        stock(2)

        def reserve(order_id):
            return ledger.reserve_line("prod-001", "var-001", 2, order_id, ["wh-001"])

        results = _race([("ord-a", ("ord-a",)), ("ord-b", ("ord-b",))], reserve)

        winners = [r for r in results.values() if not isinstance(r, InsufficientStock)]
        losers = [r for r in results.values() if isinstance(r, InsufficientStock)]
        assert len(winners) == 1
        assert len(losers) == 1

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.available == 2
        assert record.reserved == 2
        assert ledger.reconcile("prod-001", "var-001", "wh-001").consistent

    def test_many_single_unit_reservations(self, ledger, stock):
        stock(5)

        def reserve(order_id):
            return ledger.reserve("prod-001", "var-001", "wh-001", 1, order_id=order_id)

        workers = [(f"ord-{i}", (f"ord-{i}",)) for i in range(12)]
        results = _race(workers, reserve)

        succeeded = [r for r in results.values() if not isinstance(r, InsufficientStock)]
        assert len(succeeded) == 5

        record = ledger.record("prod-001", "var-001", "wh-001")
        assert record.reserved == 5
        assert record.free == 0
        assert len(record.reservations) == 5
