"""Repository for the Coupon aggregate."""

from orderflow.coupon.coupon import Coupon, normalize_code
from orderflow.domain import orderflow


@orderflow.repository(part_of=Coupon)
class CouponRepository:
    def find_by_code(self, code) -> Coupon | None:
        results = self._dao.query.filter(code=normalize_code(code)).all()
        return results.items[0] if results.items else None
