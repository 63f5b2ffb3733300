import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import uuid4
from sqlalchemy.orm import selectinload
from ..db.session import get_session
from ..models.order import Order
from ..models.order_status import OrderStatus
from ..models.order_status_history import OrderStatusHistory
from ..utils.auth import Caller
from ..utils.clock import utcnow
from .errors import ForbiddenError, OrderNotFoundError, OrderNotPayableError, PaymentNotConfiguredError
from .logging import log_event


class PaymentEventKind(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    PAYMENT_FAILED = "payment_failed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentEvent:
    """A provider notification whose signature has already been verified."""

    kind: PaymentEventKind
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    order_id: Optional[str] = None
    payment_reference: Optional[str] = None


class PaymentService:
    """Applies provider payment outcomes to orders.

    Providers deliver at least once and in any order, so each handler only
    moves an order forward from the status it expects and is a no-op otherwise.
    """

    def __init__(self, session_factory=get_session, provider: Any = None, checkout_urls=None):
        self._session_factory = session_factory
        self._provider = provider
        self._checkout_urls = checkout_urls

    def handle_event(self, event: PaymentEvent) -> Dict:
        if event.kind == PaymentEventKind.CHECKOUT_COMPLETED:
            outcome = self._checkout_completed(event)
        elif event.kind == PaymentEventKind.PAYMENT_FAILED:
            outcome = self._payment_failed(event)
        else:
            log_event("debug", "payment.event.ignored", event_id=event.event_id, event_type=event.event_type)
            outcome = "ignored"
        return {"received": True, "outcome": outcome}

    def _checkout_completed(self, event: PaymentEvent) -> str:
        if not event.order_id:
            log_event("warning", "payment.order_missing", event_id=event.event_id, reason="no order id in metadata")
            return "order_missing"

        with self._session_factory() as session:
            paid = (
                session.query(Order)
                .filter(Order.id == event.order_id, Order.status == OrderStatus.PENDING)
                .update(
                    {
                        Order.status: OrderStatus.PAID,
                        Order.payment_intent_id: event.payment_reference,
                        Order.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if paid == 1:
                session.add(
                    OrderStatusHistory(
                        id=str(uuid4()),
                        order_id=event.order_id,
                        status=OrderStatus.PAID,
                        note="Payment received",
                    )
                )
                log_event(
                    "info",
                    "payment.checkout.completed",
                    order_id=event.order_id,
                    payment_reference=event.payment_reference,
                )
                return "paid"

            order = session.query(Order).filter(Order.id == event.order_id).first()
            if order is None:
                # acknowledged anyway: the provider would retry an order that never appears
                log_event("warning", "payment.order_missing", event_id=event.event_id, order_id=event.order_id)
                return "order_missing"
            if order.payment_intent_id is None and event.payment_reference:
                order.payment_intent_id = event.payment_reference
            if order.status == OrderStatus.PAID:
                return "already_paid"
            log_event(
                "warning",
                "payment.checkout.late",
                order_id=order.id,
                status=order.status.value,
                payment_reference=event.payment_reference,
            )
            return "ignored"

    def _payment_failed(self, event: PaymentEvent) -> str:
        if not event.payment_reference:
            return "ignored"
        with self._session_factory() as session:
            order = session.query(Order).filter(Order.payment_intent_id == event.payment_reference).first()
            if order is None:
                log_event("info", "payment.failed.unmatched", payment_reference=event.payment_reference)
                return "order_missing"
            cancelled = (
                session.query(Order)
                .filter(
                    Order.id == order.id,
                    Order.status.in_([OrderStatus.PENDING, OrderStatus.PAID]),
                )
                .update({Order.status: OrderStatus.CANCELLED, Order.updated_at: utcnow()}, synchronize_session=False)
            )
            if cancelled != 1:
                return "ignored"
            session.add(
                OrderStatusHistory(
                    id=str(uuid4()),
                    order_id=order.id,
                    status=OrderStatus.CANCELLED,
                    note="Payment failed",
                )
            )
            log_event("info", "payment.failed", order_id=order.id, payment_reference=event.payment_reference)
            # unlike owner cancellation, stock stays decremented
            log_event("warning", "payment.stock_not_restored", order_id=order.id, items_count=order.items_count)
            return "cancelled"

    def create_checkout(self, order_id: str, caller: Caller) -> Dict:
        """Start a hosted checkout for a pending order and return its URL."""
        if self._provider is None or not getattr(self._provider, "is_configured", False):
            raise PaymentNotConfiguredError()
        with self._session_factory() as session:
            order = (
                session.query(Order)
                .options(selectinload(Order.items))
                .filter(Order.id == order_id)
                .first()
            )
            if not order:
                raise OrderNotFoundError(order_id)
            if order.user_id != caller.id and not caller.is_admin:
                raise ForbiddenError()
            if order.status != OrderStatus.PENDING:
                raise OrderNotPayableError(order.status.value)
            lines = [
                {
                    "name": item.product.name if item.product is not None else item.product_id,
                    "unit_amount": item.unit_price_cents,
                    "quantity": item.quantity,
                }
                for item in order.items
            ]
            urls = self._checkout_urls(order.id) if self._checkout_urls else {}
            url = self._provider.create_checkout_session(
                order_id=order.id,
                currency=order.currency,
                lines=lines,
                total_cents=order.total_cents,
                **urls,
            )
            log_event("info", "payment.checkout.created", order_id=order.id, user_id=caller.id)
            return {"url": url}
