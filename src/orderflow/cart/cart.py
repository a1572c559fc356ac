"""Shopping Cart aggregate (CQRS) — line items accumulated before checkout.

A cart belongs to a customer or to an anonymous session. Each line keeps a
snapshot of the unit price taken when it was first added. Carts expire a
fixed number of days after their last modification and are destroyed either
by a successful checkout or by the expiry sweep.
"""

from datetime import timedelta

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from orderflow import config
from orderflow.cart.events import CartCreated, CartItemAdded, CartItemQuantityUpdated, CartItemRemoved
from orderflow.domain import orderflow
from orderflow.shared.clock import as_utc, utcnow
from orderflow.shared.money import money_sum, to_money


@orderflow.entity(part_of="ShoppingCart")
class CartItem:
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    title = String(max_length=255)
    category = String(max_length=100)
    added_at = DateTime()

    @property
    def line_total(self):
        return to_money(self.unit_price) * self.quantity


@orderflow.aggregate
class ShoppingCart:
    customer_id = Identifier()  # Nullable for guest carts
    session_id = String(max_length=255)  # For guest cart identification
    items = HasMany(CartItem)
    currency = String(max_length=3, default="USD")
    created_at = DateTime()
    updated_at = DateTime()
    expires_at = DateTime()

    @invariant.post
    def cart_must_have_an_owner(self):
        if not self.customer_id and not self.session_id:
            raise ValidationError({"cart": ["A cart must belong to a customer or a session"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_id=None, currency=None):
        if not customer_id and not session_id:
            raise ValidationError({"cart": ["A cart must belong to a customer or a session"]})
        now = utcnow()
        cart = cls(
            customer_id=customer_id,
            session_id=session_id,
            currency=currency or config.default_currency(),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=config.cart_ttl_days()),
        )
        cart.raise_(
            CartCreated(
                cart_id=str(cart.id),
                customer_id=str(customer_id) if customer_id else None,
                session_id=session_id,
                expires_at=cart.expires_at,
            )
        )
        return cart

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def is_expired(self, as_of=None) -> bool:
        now = as_utc(as_of) or utcnow()
        return self.expires_at is not None and as_utc(self.expires_at) <= now

    def find_item(self, product_id, variant_id):
        for item in self.items:
            if str(item.product_id) == str(product_id) and str(item.variant_id) == str(variant_id):
                return item
        return None

    @property
    def subtotal(self):
        return money_sum(item.line_total for item in self.items)

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, product_id, variant_id, quantity, unit_price, title=None, category=None):
        """Add a line, or increase the quantity of an existing one.

        The unit price of an existing line is not refreshed; the first
        snapshot stands until the line is removed.
        """
        self._assert_open()
        if quantity is None or quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        existing = self.find_item(product_id, variant_id)
        if existing is not None:
            previous = existing.quantity
            existing.quantity = previous + quantity
            self.raise_(
                CartItemQuantityUpdated(
                    cart_id=str(self.id),
                    product_id=str(product_id),
                    variant_id=str(variant_id),
                    previous_quantity=previous,
                    new_quantity=existing.quantity,
                )
            )
        else:
            self.add_items(
                CartItem(
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity=quantity,
                    unit_price=unit_price,
                    title=title,
                    category=category,
                    added_at=utcnow(),
                )
            )
            self.raise_(
                CartItemAdded(
                    cart_id=str(self.id),
                    product_id=str(product_id),
                    variant_id=str(variant_id),
                    quantity=quantity,
                    unit_price=unit_price,
                )
            )
        self._touch()

    def update_quantity(self, product_id, variant_id, quantity):
        """Set a line's quantity; zero removes the line."""
        self._assert_open()
        if quantity is None or quantity < 0:
            raise ValidationError({"quantity": ["Quantity cannot be negative"]})

        item = self._require_item(product_id, variant_id)
        if quantity == 0:
            self.remove_item(product_id, variant_id)
            return

        previous = item.quantity
        item.quantity = quantity
        self.raise_(
            CartItemQuantityUpdated(
                cart_id=str(self.id),
                product_id=str(product_id),
                variant_id=str(variant_id),
                previous_quantity=previous,
                new_quantity=quantity,
            )
        )
        self._touch()

    def remove_item(self, product_id, variant_id):
        self._assert_open()
        item = self._require_item(product_id, variant_id)
        self.remove_items(item)
        self.raise_(
            CartItemRemoved(
                cart_id=str(self.id),
                product_id=str(product_id),
                variant_id=str(variant_id),
            )
        )
        self._touch()

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _assert_open(self):
        if self.is_expired():
            raise ValidationError({"cart": ["Cart has expired"]})

    def _require_item(self, product_id, variant_id):
        item = self.find_item(product_id, variant_id)
        if item is None:
            raise ValidationError({"item": [f"Item {product_id}/{variant_id} is not in the cart"]})
        return item

    def _touch(self):
        now = utcnow()
        self.updated_at = now
        self.expires_at = now + timedelta(days=config.cart_ttl_days())
