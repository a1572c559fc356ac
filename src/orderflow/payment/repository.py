"""Repository for the Payment aggregate."""

from orderflow.domain import orderflow
from orderflow.payment.payment import Payment


@orderflow.repository(part_of=Payment)
class PaymentRepository:
    def find_by_provider_reference(self, provider_reference) -> Payment | None:
        if not provider_reference:
            return None
        results = self._dao.query.filter(provider_reference=provider_reference).all()
        return results.items[0] if results.items else None

    def find_by_idempotency_key(self, idempotency_key) -> Payment | None:
        if not idempotency_key:
            return None
        results = self._dao.query.filter(idempotency_key=idempotency_key).all()
        return results.items[0] if results.items else None

    def find_for_order(self, order_id) -> list[Payment]:
        results = self._dao.query.filter(order_id=str(order_id)).all()
        return sorted(results.items, key=lambda p: p.created_at)
