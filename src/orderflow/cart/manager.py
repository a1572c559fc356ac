"""CartManager — application service over the ShoppingCart aggregate."""

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from orderflow.cart.cart import ShoppingCart
from orderflow.cart.management import (
    AddToCart,
    CreateCart,
    DestroyCart,
    RemoveFromCart,
    UpdateCartQuantity,
)
from orderflow.shared.clock import utcnow

logger = structlog.get_logger(__name__)


class CartManager:
    def _repo(self):
        return current_domain.repository_for(ShoppingCart)

    def create_cart(self, customer_id=None, session_id=None, currency=None) -> ShoppingCart:
        cart_id = current_domain.process(
            CreateCart(customer_id=customer_id, session_id=session_id, currency=currency),
            asynchronous=False,
        )
        logger.info("Cart created", cart_id=cart_id, customer_id=customer_id, session_id=session_id)
        return self._repo().get(cart_id)

    def get_cart(self, cart_id) -> ShoppingCart:
        return self._repo().get(cart_id)

    def add_item(self, cart_id, product_id, variant_id, quantity, unit_price, title=None, category=None):
        current_domain.process(
            AddToCart(
                cart_id=cart_id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                unit_price=unit_price,
                title=title,
                category=category,
            ),
            asynchronous=False,
        )
        return self.get_cart(cart_id)

    def update_quantity(self, cart_id, product_id, variant_id, quantity):
        current_domain.process(
            UpdateCartQuantity(
                cart_id=cart_id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
            ),
            asynchronous=False,
        )
        return self.get_cart(cart_id)

    def remove_item(self, cart_id, product_id, variant_id):
        current_domain.process(
            RemoveFromCart(cart_id=cart_id, product_id=product_id, variant_id=variant_id),
            asynchronous=False,
        )
        return self.get_cart(cart_id)

    def destroy(self, cart_id, reason) -> None:
        current_domain.process(DestroyCart(cart_id=cart_id, reason=reason), asynchronous=False)
        logger.info("Cart destroyed", cart_id=str(cart_id), reason=reason)

    def sweep_expired(self, as_of=None) -> int:
        """Destroy every cart whose expiry has passed. Returns how many were removed."""
        as_of = as_of or utcnow()
        carts = self._repo()._dao.query.all().items
        expired = [cart for cart in carts if cart.is_expired(as_of)]

        if not expired:
            logger.info("No expired carts found", as_of=as_of.isoformat())
            return 0

        removed = 0
        for cart in expired:
            try:
                self.destroy(str(cart.id), reason="expired")
                removed += 1
            except (ValidationError, InvalidOperationError, ObjectNotFoundError) as exc:
                logger.warning("Failed to destroy expired cart", cart_id=str(cart.id), error=str(exc))

        logger.info("Expired carts swept", removed=removed, as_of=as_of.isoformat())
        return removed
