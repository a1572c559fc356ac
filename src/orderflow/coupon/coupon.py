"""Coupon aggregate — a discount rule with atomically consumed usage counters.

The usage counter is shared state contended by concurrent checkouts, so the
capacity check and the increment happen in the same method call; the
CouponEvaluator serializes those calls per code. ``usage_count`` never
exceeds ``usage_limit`` because the redemption is refused, not corrected
afterwards.
"""

import json
import re
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from orderflow.coupon.events import (
    CouponCreated,
    CouponDeactivated,
    CouponRedeemed,
    CouponRedemptionReversed,
)
from orderflow.domain import orderflow
from orderflow.errors import (
    CouponBelowMinimum,
    CouponExpired,
    CouponNotEligible,
    CouponNotFound,
    CouponNotYetActive,
    CouponUsageExhausted,
)
from orderflow.shared.clock import as_utc, utcnow
from orderflow.shared.money import ZERO, as_float, money_sum, to_money

_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


class DiscountType(Enum):
    PERCENTAGE = "Percentage"
    FIXED_AMOUNT = "Fixed_Amount"
    FREE_SHIPPING = "Free_Shipping"


class RedemptionStatus(Enum):
    APPLIED = "Applied"
    REVERSED = "Reversed"


def normalize_code(code) -> str:
    return (code or "").strip().upper()


@orderflow.entity(part_of="Coupon")
class AppliedCoupon:
    """Audit record binding the coupon to one order with the discount granted."""

    order_id = Identifier(required=True)
    customer_id = Identifier()
    discount_amount = Float(default=0.0, min_value=0.0)
    free_shipping = Boolean(default=False)
    status = String(choices=RedemptionStatus, default=RedemptionStatus.APPLIED.value)
    applied_at = DateTime(required=True)
    reversed_at = DateTime()


@orderflow.aggregate
class Coupon:
    code = String(required=True, max_length=50, unique=True)
    name = String(required=True, max_length=255)
    description = Text()
    discount_type = String(required=True, choices=DiscountType)
    discount_value = Float(default=0.0, min_value=0.0)
    max_discount_amount = Float(min_value=0.0)
    usage_limit = Integer(min_value=1)  # None means unlimited
    usage_count = Integer(default=0, min_value=0)
    per_user_limit = Integer(default=1, min_value=1)
    minimum_order_amount = Float(default=0.0, min_value=0.0)
    applicable_categories = Text()  # JSON array of category names
    applicable_products = Text()  # JSON array of product ids
    excluded_products = Text()  # JSON array of product ids
    starts_at = DateTime()
    expires_at = DateTime()
    is_active = Boolean(default=True)
    applications = HasMany(AppliedCoupon)
    created_at = DateTime()

    @invariant.post
    def usage_count_cannot_exceed_limit(self):
        if self.usage_limit is not None and (self.usage_count or 0) > self.usage_limit:
            raise ValidationError({"usage_count": ["Usage count cannot exceed the usage limit"]})

    @invariant.post
    def percentage_cannot_exceed_hundred(self):
        if self.discount_type == DiscountType.PERCENTAGE.value and (self.discount_value or 0) > 100:
            raise ValidationError({"discount_value": ["Percentage discount cannot exceed 100"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        code,
        name,
        discount_type,
        discount_value=0.0,
        max_discount_amount=None,
        usage_limit=None,
        per_user_limit=1,
        minimum_order_amount=0.0,
        applicable_categories=None,
        applicable_products=None,
        excluded_products=None,
        starts_at=None,
        expires_at=None,
        description=None,
    ):
        normalized = normalize_code(code)
        if not _CODE_PATTERN.match(normalized):
            raise ValidationError({"code": ["Coupon code must be alphanumeric"]})

        kind = DiscountType(discount_type)
        if kind != DiscountType.FREE_SHIPPING and not discount_value:
            raise ValidationError({"discount_value": ["Discount value must be positive"]})
        if kind == DiscountType.PERCENTAGE and discount_value > 100:
            raise ValidationError({"discount_value": ["Percentage discount cannot exceed 100"]})
        if starts_at and expires_at and as_utc(expires_at) <= as_utc(starts_at):
            raise ValidationError({"expires_at": ["Coupon must expire after it starts"]})

        now = utcnow()
        coupon = cls(
            code=normalized,
            name=name,
            description=description,
            discount_type=kind.value,
            discount_value=discount_value or 0.0,
            max_discount_amount=max_discount_amount,
            usage_limit=usage_limit,
            usage_count=0,
            per_user_limit=per_user_limit or 1,
            minimum_order_amount=minimum_order_amount or 0.0,
            applicable_categories=json.dumps(list(applicable_categories or [])),
            applicable_products=json.dumps([str(p) for p in applicable_products or []]),
            excluded_products=json.dumps([str(p) for p in excluded_products or []]),
            starts_at=starts_at,
            expires_at=expires_at,
            is_active=True,
            created_at=now,
        )
        coupon.raise_(
            CouponCreated(
                coupon_id=str(coupon.id),
                code=normalized,
                discount_type=kind.value,
                discount_value=coupon.discount_value,
                usage_limit=usage_limit,
                created_at=now,
            )
        )
        return coupon

    # -------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------
    @property
    def category_list(self) -> list:
        return json.loads(self.applicable_categories) if self.applicable_categories else []

    @property
    def product_list(self) -> list:
        return json.loads(self.applicable_products) if self.applicable_products else []

    @property
    def excluded_list(self) -> list:
        return json.loads(self.excluded_products) if self.excluded_products else []

    @property
    def is_restricted(self) -> bool:
        return bool(self.category_list or self.product_list or self.excluded_list)

    def active_applications(self):
        return [a for a in self.applications if a.status == RedemptionStatus.APPLIED.value]

    def application_for(self, order_id):
        for application in self.active_applications():
            if str(application.order_id) == str(order_id):
                return application
        return None

    def evaluate(self, order_subtotal, cart_contents=None, customer_id=None, as_of=None):
        """Validate the coupon against an order and compute the discount.

        Returns ``(discount_amount, free_shipping)``. Raises a CouponError
        subclass when any rule fails. Does not consume usage.
        """
        now = as_utc(as_of) or utcnow()
        if not self.is_active:
            raise CouponNotFound(self.code)
        if self.starts_at and now < as_utc(self.starts_at):
            raise CouponNotYetActive(self.code)
        if self.expires_at and now >= as_utc(self.expires_at):
            raise CouponExpired(self.code)

        subtotal = to_money(order_subtotal)
        minimum = to_money(self.minimum_order_amount)
        if subtotal < minimum:
            raise CouponBelowMinimum(
                self.code,
                f"Order subtotal {subtotal} is below the minimum {minimum} for coupon {self.code}",
            )

        base = self._discount_base(subtotal, cart_contents)
        self._check_capacity(customer_id)

        kind = DiscountType(self.discount_type)
        if kind == DiscountType.FREE_SHIPPING:
            return ZERO, True
        if kind == DiscountType.PERCENTAGE:
            discount = to_money(base * to_money(self.discount_value) / Decimal(100))
            if self.max_discount_amount is not None:
                discount = min(discount, to_money(self.max_discount_amount))
        else:
            discount = min(to_money(self.discount_value), base)
        return to_money(discount), False

    def _discount_base(self, subtotal, cart_contents):
        if not self.is_restricted:
            return subtotal
        if not cart_contents:
            raise CouponNotEligible(self.code)

        excluded = set(self.excluded_list)
        products = set(self.product_list)
        categories = set(self.category_list)
        eligible = []
        for line in cart_contents:
            product_id = str(line.product_id)
            if product_id in excluded:
                continue
            if (products or categories) and not (
                product_id in products or (line.category and line.category in categories)
            ):
                continue
            eligible.append(line)

        if not eligible:
            raise CouponNotEligible(self.code)
        return min(money_sum(to_money(line.unit_price) * line.quantity for line in eligible), subtotal)

    def _check_capacity(self, customer_id):
        if self.usage_limit is not None and self.usage_count >= self.usage_limit:
            raise CouponUsageExhausted(self.code)
        if customer_id:
            used = [a for a in self.active_applications() if str(a.customer_id) == str(customer_id)]
            if len(used) >= (self.per_user_limit or 1):
                raise CouponUsageExhausted(
                    self.code,
                    f"Customer {customer_id} has already used coupon {self.code} the maximum number of times",
                )

    # -------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------
    def redeem(self, order_id, order_subtotal, cart_contents=None, customer_id=None, as_of=None):
        """Evaluate and consume one usage slot in a single step.

        Redeeming again for an order that already holds an active application
        returns that application unchanged.
        """
        existing = self.application_for(order_id)
        if existing is not None:
            return existing

        discount, free_shipping = self.evaluate(order_subtotal, cart_contents, customer_id, as_of)

        now = utcnow()
        application = AppliedCoupon(
            order_id=order_id,
            customer_id=customer_id,
            discount_amount=as_float(discount),
            free_shipping=free_shipping,
            status=RedemptionStatus.APPLIED.value,
            applied_at=now,
        )
        with atomic_change(self):
            self.add_applications(application)
            self.usage_count = (self.usage_count or 0) + 1

        self.raise_(
            CouponRedeemed(
                coupon_id=str(self.id),
                code=self.code,
                order_id=str(order_id),
                customer_id=str(customer_id) if customer_id else None,
                discount_amount=as_float(discount),
                free_shipping=free_shipping,
                usage_count=self.usage_count,
                redeemed_at=now,
            )
        )
        return application

    def reverse(self, order_id):
        """Give back the usage slot taken for ``order_id``. No-op if none is held."""
        application = self.application_for(order_id)
        if application is None:
            return False

        now = utcnow()
        with atomic_change(self):
            application.status = RedemptionStatus.REVERSED.value
            application.reversed_at = now
            self.usage_count = max((self.usage_count or 0) - 1, 0)

        self.raise_(
            CouponRedemptionReversed(
                coupon_id=str(self.id),
                code=self.code,
                order_id=str(order_id),
                usage_count=self.usage_count,
                reversed_at=now,
            )
        )
        return True

    def deactivate(self):
        if not self.is_active:
            raise ValidationError({"is_active": ["Coupon is already inactive"]})
        self.is_active = False
        self.raise_(
            CouponDeactivated(
                coupon_id=str(self.id),
                code=self.code,
                deactivated_at=utcnow(),
            )
        )
