"""Repository for the Order aggregate."""

from orderflow.domain import orderflow
from orderflow.order.order import Order, OrderStatus, PaymentStatus


@orderflow.repository(part_of=Order)
class OrderRepository:
    def find_by_number(self, order_number) -> Order | None:
        results = self._dao.query.filter(order_number=order_number).all()
        return results.items[0] if results.items else None

    def find_by_idempotency_key(self, idempotency_key) -> Order | None:
        if not idempotency_key:
            return None
        results = self._dao.query.filter(idempotency_key=idempotency_key).all()
        return results.items[0] if results.items else None

    def find_live_for_cart(self, cart_id) -> Order | None:
        """The cart's order that has not been cancelled, if any."""
        results = self._dao.query.filter(cart_id=str(cart_id)).all()
        live = [order for order in results.items if order.status != OrderStatus.CANCELLED.value]
        return live[0] if live else None

    def find_pending_capture(self) -> list[Order]:
        """Orders still waiting on a capture outcome."""
        results = self._dao.query.filter(
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
        ).all()
        return results.items
