"""Domain events for the Coupon aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from orderflow.domain import orderflow


@orderflow.event(part_of="Coupon")
class CouponCreated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    discount_type = String(required=True)
    discount_value = Float(required=True)
    usage_limit = Integer()
    created_at = DateTime(required=True)


@orderflow.event(part_of="Coupon")
class CouponRedeemed:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier()
    discount_amount = Float(required=True)
    free_shipping = Boolean(default=False)
    usage_count = Integer(required=True)
    redeemed_at = DateTime(required=True)


@orderflow.event(part_of="Coupon")
class CouponRedemptionReversed:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    order_id = Identifier(required=True)
    usage_count = Integer(required=True)
    reversed_at = DateTime(required=True)


@orderflow.event(part_of="Coupon")
class CouponDeactivated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    deactivated_at = DateTime(required=True)
