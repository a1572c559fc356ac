"""Coupon lifecycle — create and deactivate commands and handler."""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from orderflow.coupon.coupon import Coupon, normalize_code
from orderflow.domain import orderflow


@orderflow.command(part_of="Coupon")
class CreateCoupon:
    code = String(required=True, max_length=50)
    name = String(required=True, max_length=255)
    description = Text()
    discount_type = String(required=True, max_length=20)
    discount_value = Float(default=0.0)
    max_discount_amount = Float()
    usage_limit = Integer()
    per_user_limit = Integer(default=1)
    minimum_order_amount = Float(default=0.0)
    applicable_categories = Text()  # JSON array
    applicable_products = Text()  # JSON array
    excluded_products = Text()  # JSON array
    starts_at = DateTime()
    expires_at = DateTime()


@orderflow.command(part_of="Coupon")
class DeactivateCoupon:
    coupon_id = Identifier(required=True)


@orderflow.command_handler(part_of=Coupon)
class CouponManagementHandler:
    @handle(CreateCoupon)
    def create_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        if repo.find_by_code(command.code) is not None:
            raise ValidationError({"code": [f"Coupon code {normalize_code(command.code)} already exists"]})

        coupon = Coupon.create(
            code=command.code,
            name=command.name,
            description=command.description,
            discount_type=command.discount_type,
            discount_value=command.discount_value,
            max_discount_amount=command.max_discount_amount,
            usage_limit=command.usage_limit,
            per_user_limit=command.per_user_limit,
            minimum_order_amount=command.minimum_order_amount,
            applicable_categories=json.loads(command.applicable_categories) if command.applicable_categories else None,
            applicable_products=json.loads(command.applicable_products) if command.applicable_products else None,
            excluded_products=json.loads(command.excluded_products) if command.excluded_products else None,
            starts_at=command.starts_at,
            expires_at=command.expires_at,
        )
        repo.add(coupon)
        return str(coupon.id)

    @handle(DeactivateCoupon)
    def deactivate_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        coupon.deactivate()
        repo.add(coupon)
