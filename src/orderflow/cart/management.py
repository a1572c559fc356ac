"""Cart management — create, add, update, remove and destroy commands and handler."""

from protean import handle
from protean.fields import Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from orderflow.cart.cart import ShoppingCart
from orderflow.domain import orderflow


@orderflow.command(part_of="ShoppingCart")
class CreateCart:
    customer_id = Identifier()
    session_id = String(max_length=255)
    currency = String(max_length=3)


@orderflow.command(part_of="ShoppingCart")
class AddToCart:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    title = String(max_length=255)
    category = String(max_length=100)


@orderflow.command(part_of="ShoppingCart")
class UpdateCartQuantity:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=0)


@orderflow.command(part_of="ShoppingCart")
class RemoveFromCart:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)


@orderflow.command(part_of="ShoppingCart")
class DestroyCart:
    """Delete a cart after checkout or when the expiry sweep finds it stale."""

    cart_id = Identifier(required=True)
    reason = String(max_length=100)


@orderflow.command_handler(part_of=ShoppingCart)
class CartManagementHandler:
    @handle(CreateCart)
    def create_cart(self, command):
        cart = ShoppingCart.create(
            customer_id=command.customer_id,
            session_id=command.session_id,
            currency=command.currency,
        )
        current_domain.repository_for(ShoppingCart).add(cart)
        return str(cart.id)

    @handle(AddToCart)
    def add_to_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.add_item(
            product_id=command.product_id,
            variant_id=command.variant_id,
            quantity=command.quantity,
            unit_price=command.unit_price,
            title=command.title,
            category=command.category,
        )
        repo.add(cart)

    @handle(UpdateCartQuantity)
    def update_quantity(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.update_quantity(command.product_id, command.variant_id, command.quantity)
        repo.add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        cart.remove_item(command.product_id, command.variant_id)
        repo.add(cart)

    @handle(DestroyCart)
    def destroy_cart(self, command):
        repo = current_domain.repository_for(ShoppingCart)
        cart = repo.get(command.cart_id)
        repo._dao.delete(cart)
