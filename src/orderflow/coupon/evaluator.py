"""CouponEvaluator — validates codes and consumes usage slots atomically.

Usage counters are contended across checkouts. ``apply`` runs the capacity
check and the increment inside one command under a per-code lock, so two
checkouts that both see "one slot left" cannot both succeed.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

import structlog
from protean.utils.globals import current_domain

from orderflow.coupon.coupon import Coupon, normalize_code
from orderflow.coupon.management import CreateCoupon, DeactivateCoupon
from orderflow.coupon.redemption import RedeemCoupon, ReverseCouponRedemption, lines_to_json
from orderflow.errors import CouponError, CouponNotFound
from orderflow.shared.money import to_money
from orderflow.utils.locks import coupon_locks

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CouponApplication:
    coupon_id: str
    code: str
    order_id: str
    discount_amount: Decimal
    free_shipping: bool = False


class CouponEvaluator:
    def _repo(self):
        return current_domain.repository_for(Coupon)

    def get(self, code) -> Coupon:
        coupon = self._repo().find_by_code(code)
        if coupon is None:
            raise CouponNotFound(normalize_code(code))
        return coupon

    def create_coupon(self, code, name, discount_type, discount_value=0.0, **options) -> Coupon:
        for key in ("applicable_categories", "applicable_products", "excluded_products"):
            if options.get(key) is not None:
                options[key] = json.dumps(list(options[key]))

        coupon_id = current_domain.process(
            CreateCoupon(
                code=code,
                name=name,
                discount_type=discount_type,
                discount_value=discount_value,
                **options,
            ),
            asynchronous=False,
        )
        logger.info("Coupon created", code=normalize_code(code), discount_type=discount_type)
        return self._repo().get(coupon_id)

    def deactivate(self, code) -> None:
        coupon = self.get(code)
        with coupon_locks.hold(coupon.code):
            current_domain.process(DeactivateCoupon(coupon_id=str(coupon.id)), asynchronous=False)
        logger.info("Coupon deactivated", code=coupon.code)

    def quote(self, code, order_subtotal, cart_contents=None, customer_id=None) -> CouponApplication:
        """Compute the discount a code would grant without consuming it."""
        coupon = self.get(code)
        discount, free_shipping = coupon.evaluate(order_subtotal, cart_contents, customer_id)
        return CouponApplication(
            coupon_id=str(coupon.id),
            code=coupon.code,
            order_id="",
            discount_amount=discount,
            free_shipping=free_shipping,
        )

    def apply(self, code, order_subtotal, cart_contents=None, customer_id=None, order_id=None) -> CouponApplication:
        normalized = normalize_code(code)
        order_id = str(order_id or uuid4())

        try:
            with coupon_locks.hold(normalized):
                result = current_domain.process(
                    RedeemCoupon(
                        code=normalized,
                        order_id=order_id,
                        customer_id=customer_id,
                        order_subtotal=float(to_money(order_subtotal)),
                        cart_contents=lines_to_json(cart_contents) if cart_contents else None,
                    ),
                    asynchronous=False,
                )
        except CouponError as exc:
            logger.warning(
                "Coupon rejected",
                code=normalized,
                order_id=order_id,
                error=type(exc).__name__,
                messages=exc.messages,
            )
            raise

        application = CouponApplication(
            coupon_id=result["coupon_id"],
            code=result["code"],
            order_id=result["order_id"],
            discount_amount=to_money(result["discount_amount"]),
            free_shipping=bool(result["free_shipping"]),
        )
        logger.info(
            "Coupon applied",
            code=normalized,
            order_id=order_id,
            discount_amount=str(application.discount_amount),
            free_shipping=application.free_shipping,
        )
        return application

    def rollback(self, code, order_id) -> bool:
        """Reverse the usage taken for ``order_id``. Safe to call repeatedly."""
        normalized = normalize_code(code)
        with coupon_locks.hold(normalized):
            changed = current_domain.process(
                ReverseCouponRedemption(code=normalized, order_id=str(order_id)),
                asynchronous=False,
            )
        if changed:
            logger.info("Coupon usage rolled back", code=normalized, order_id=str(order_id))
        return changed
