from datetime import timedelta
from decimal import Decimal

import pytest
from protean.exceptions import ValidationError

from orderflow.cart.cart import ShoppingCart
from orderflow.cart.events import CartItemAdded, CartItemQuantityUpdated, CartItemRemoved
from orderflow.shared.clock import utcnow


def _cart():
    return ShoppingCart.create(customer_id="cust-001")


class TestCartCreation:
    def test_customer_cart(self):
        cart = _cart()
        assert cart.customer_id == "cust-001"
        assert cart.currency == "USD"
        assert cart.expires_at > cart.created_at

    def test_guest_cart(self):
        cart = ShoppingCart.create(session_id="sess-001")
        assert cart.session_id == "sess-001"

    def test_owner_required(self):
        with pytest.raises(ValidationError):
            ShoppingCart.create()


class TestCartItems:
    def test_add_item(self):
        cart = _cart()
        cart.add_item("prod-001", "var-001", 2, 19.99, title="Tee")

        assert len(cart.items) == 1
        assert cart.subtotal == Decimal("39.98")
        assert any(isinstance(e, CartItemAdded) for e in cart._events)

    def test_adding_existing_line_merges_quantity(self):
        cart = _cart()
        cart.add_item("prod-001", "var-001", 2, 10.0)
        cart.add_item("prod-001", "var-001", 3, 12.0)

        assert len(cart.items) == 1
        item = cart.items[0]
        assert item.quantity == 5
        # First price snapshot stands
        assert item.unit_price == 10.0
        assert any(isinstance(e, CartItemQuantityUpdated) for e in cart._events)

    def test_zero_quantity_rejected(self):
        cart = _cart()
        with pytest.raises(ValidationError):
            cart.add_item("prod-001", "var-001", 0, 10.0)

    def test_update_quantity(self):
        cart = _cart()
        cart.add_item("prod-001", "var-001", 2, 10.0)
        cart.update_quantity("prod-001", "var-001", 7)
        assert cart.items[0].quantity == 7

    def test_update_to_zero_removes_line(self):
        cart = _cart()
        cart.add_item("prod-001", "var-001", 2, 10.0)
        cart.update_quantity("prod-001", "var-001", 0)
        assert len(cart.items) == 0
        assert any(isinstance(e, CartItemRemoved) for e in cart._events)

    def test_update_missing_line_rejected(self):
        cart = _cart()
        with pytest.raises(ValidationError):
            cart.update_quantity("prod-404", "var-001", 1)

    def test_remove_item(self):
        cart = _cart()
        cart.add_item("prod-001", "var-001", 2, 10.0)
        cart.add_item("prod-002", "var-001", 1, 5.0)
        cart.remove_item("prod-001", "var-001")

        assert [i.product_id for i in cart.items] == ["prod-002"]
        assert cart.subtotal == Decimal("5.00")


class TestCartExpiry:
    def test_not_expired_when_fresh(self):
        assert _cart().is_expired() is False

    def test_expired_after_ttl(self):
        cart = _cart()
        assert cart.is_expired(as_of=utcnow() + timedelta(days=31)) is True

    def test_expired_cart_refuses_changes(self):
        cart = _cart()
        cart.expires_at = utcnow() - timedelta(seconds=1)
        with pytest.raises(ValidationError):
            cart.add_item("prod-001", "var-001", 1, 10.0)

    def test_changes_extend_expiry(self):
        cart = _cart()
        before = cart.expires_at
        cart.add_item("prod-001", "var-001", 1, 10.0)
        assert cart.expires_at >= before
