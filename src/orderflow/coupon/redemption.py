"""Coupon redemption — consume and reverse usage slots."""

import json
from dataclasses import dataclass

from protean import handle
from protean.fields import DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from orderflow.coupon.coupon import Coupon
from orderflow.domain import orderflow
from orderflow.errors import CouponNotFound


@dataclass(frozen=True)
class CartLine:
    """The slice of a cart line that coupon eligibility rules look at."""

    product_id: str
    quantity: int
    unit_price: float
    category: str | None = None
    variant_id: str | None = None


def lines_to_json(lines) -> str:
    return json.dumps(
        [
            {
                "product_id": str(line.product_id),
                "variant_id": str(line.variant_id) if getattr(line, "variant_id", None) else None,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "category": getattr(line, "category", None),
            }
            for line in lines
        ]
    )


def lines_from_json(payload) -> list[CartLine] | None:
    if not payload:
        return None
    return [CartLine(**line) for line in json.loads(payload)]


@orderflow.command(part_of="Coupon")
class RedeemCoupon:
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    customer_id = Identifier()
    order_subtotal = Float(required=True, min_value=0.0)
    cart_contents = Text()  # JSON array of cart lines
    as_of = DateTime()


@orderflow.command(part_of="Coupon")
class ReverseCouponRedemption:
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)


@orderflow.command_handler(part_of=Coupon)
class CouponRedemptionHandler:
    @handle(RedeemCoupon)
    def redeem_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.find_by_code(command.code)
        if coupon is None:
            raise CouponNotFound(command.code)

        application = coupon.redeem(
            order_id=command.order_id,
            order_subtotal=command.order_subtotal,
            cart_contents=lines_from_json(command.cart_contents),
            customer_id=command.customer_id,
            as_of=command.as_of,
        )
        repo.add(coupon)
        return {
            "coupon_id": str(coupon.id),
            "code": coupon.code,
            "order_id": str(application.order_id),
            "discount_amount": application.discount_amount,
            "free_shipping": application.free_shipping,
        }

    @handle(ReverseCouponRedemption)
    def reverse_redemption(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.find_by_code(command.code)
        if coupon is None:
            raise CouponNotFound(command.code)
        changed = coupon.reverse(command.order_id)
        if changed:
            repo.add(coupon)
        return changed
