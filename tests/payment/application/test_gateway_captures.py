"""FakeGateway capture semantics: idempotency by key, including overlapping calls."""

import threading

import pytest

from orderflow.gateway.fake_adapter import FakeGateway


class TestIdempotentCapture:
    def test_repeated_key_returns_the_first_result(self):
        gateway = FakeGateway()

        first = gateway.capture("order-1", 50.0, "USD", "key-1")
        second = gateway.capture("order-1", 50.0, "USD", "key-1")

        assert first.provider_reference == second.provider_reference
        assert gateway.lookup("key-1") == first

    def test_overlapping_captures_with_one_key_charge_once(self):
        gateway = FakeGateway()
        capture_started = threading.Event()
        release_capture = threading.Event()
        charges = []

        def hold_capture(**kwargs):
            charges.append(kwargs["idempotency_key"])
            capture_started.set()
            release_capture.wait(timeout=5)

        gateway.before_capture = hold_capture
        results = []

        def capture():
            results.append(gateway.capture("order-1", 50.0, "USD", "key-1"))

        first = threading.Thread(target=capture)
        first.start()
        assert capture_started.wait(timeout=5)

        second = threading.Thread(target=capture)
        second.start()
        second.join(timeout=0.2)
        # The second call waits on the capture in flight.
        assert second.is_alive()

        release_capture.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert charges == ["key-1"]
        assert len(results) == 2
        assert results[0].provider_reference == results[1].provider_reference

    def test_failed_charge_frees_the_key(self):
        gateway = FakeGateway()

        def fail(**kwargs):
            raise ConnectionError("provider unreachable")

        gateway.before_capture = fail
        with pytest.raises(ConnectionError):
            gateway.capture("order-1", 50.0, "USD", "key-1")

        gateway.before_capture = None
        result = gateway.capture("order-1", 50.0, "USD", "key-1")

        assert result.succeeded
