import pytest
from protean.exceptions import ValidationError

from orderflow.order.order import OrderPricing


class TestOrderPricing:
    def test_compute_balances(self):
        pricing = OrderPricing.compute(subtotal="100.00", discount="5.00", tax="9.50", shipping="4.99")
        assert pricing.grand_total == 109.49

    def test_compute_rounds_to_cents(self):
        pricing = OrderPricing.compute(subtotal=10.005)
        assert pricing.subtotal == 10.01
        assert pricing.grand_total == 10.01

    def test_mismatched_grand_total_rejected(self):
        with pytest.raises(ValidationError):
            OrderPricing(subtotal=100.0, discount_total=0.0, tax_total=0.0, shipping_total=0.0, grand_total=90.0)

    def test_discount_cannot_exceed_subtotal(self):
        with pytest.raises(ValidationError):
            OrderPricing(subtotal=10.0, discount_total=20.0, tax_total=10.0, shipping_total=0.0, grand_total=0.0)
