"""Order status changes after creation: admin updates and owner cancellation."""

from typing import Dict, Optional
from uuid import uuid4
from ..db.session import get_session
from ..models.order import Order
from ..models.order_item import OrderItem
from ..models.order_status import CANCELLABLE_STATUSES, OrderStatus
from ..models.order_status_history import OrderStatusHistory
from ..models.product import Product
from ..utils.auth import Caller
from ..utils.clock import utcnow
from ..utils.dto import to_order_dto
from .errors import ForbiddenError, OrderNotCancellableError, OrderNotFoundError
from .logging import log_event


class OrderStatusService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def update_status(
        self,
        order_id: str,
        caller: Caller,
        *,
        status: str,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Dict:
        """Administrative status change.

        Any target status is accepted; moves the transition table does not
        allow are logged as overrides. Entering FULFILLED stamps ``shipped_at``
        once. Stock is never adjusted here.
        """
        if not caller.is_admin:
            raise ForbiddenError()
        target = OrderStatus.parse(status)
        note = _optional_text(note, "note", 500)
        tracking_number = _optional_text(tracking_number, "tracking_number", 100)

        with self._session_factory() as session:
            order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
            if not order:
                raise OrderNotFoundError(order_id)
            previous = order.status
            if previous != target and not previous.can_transition_to(target):
                log_event(
                    "warning",
                    "order.status.override",
                    order_id=order_id,
                    previous=previous.value,
                    status=target.value,
                    admin_id=caller.id,
                )

            session.add(
                OrderStatusHistory(id=str(uuid4()), order_id=order_id, status=target, note=note)
            )
            order.status = target
            if tracking_number:
                order.tracking_number = tracking_number
            if target == OrderStatus.FULFILLED and previous != OrderStatus.FULFILLED:
                order.shipped_at = utcnow()
            order.updated_at = utcnow()
            session.flush()
            session.expire(order, ["status_history"])
            log_event(
                "info",
                "order.status.updated",
                order_id=order_id,
                previous=previous.value,
                status=target.value,
                admin_id=caller.id,
            )
            return to_order_dto(order, include_history=True)

    def cancel_order(self, order_id: str, caller: Caller) -> Dict:
        """Cancel an order on behalf of its owner and put its stock back.

        The status flip is guarded on the current status, so of two racing
        cancellations only one restores stock.
        """
        with self._session_factory() as session:
            order = session.query(Order).filter(Order.id == order_id).first()
            if not order:
                raise OrderNotFoundError(order_id)
            if order.user_id != caller.id:
                raise ForbiddenError()
            if not order.status.is_cancellable:
                raise OrderNotCancellableError(order.status.value)

            flipped = (
                session.query(Order)
                .filter(Order.id == order_id, Order.status.in_(list(CANCELLABLE_STATUSES)))
                .update(
                    {Order.status: OrderStatus.CANCELLED, Order.updated_at: utcnow()},
                    synchronize_session=False,
                )
            )
            if flipped != 1:
                session.refresh(order)
                raise OrderNotCancellableError(order.status.value)

            session.add(
                OrderStatusHistory(
                    id=str(uuid4()),
                    order_id=order_id,
                    status=OrderStatus.CANCELLED,
                    note="Cancelled by user",
                )
            )
            items = session.query(OrderItem).filter(OrderItem.order_id == order_id).all()
            for item in items:
                session.query(Product).filter(Product.id == item.product_id).update(
                    {Product.stock: Product.stock + item.quantity}, synchronize_session=False
                )
            session.flush()
            session.refresh(order)
            session.expire(order, ["status_history"])
            log_event(
                "info",
                "order.cancelled",
                order_id=order_id,
                user_id=caller.id,
                restored_units=sum(it.quantity for it in items),
            )
            return to_order_dto(order, include_history=True)


def _optional_text(value, field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string")
    v = value.strip()
    if len(v) > max_length:
        raise ValueError(f"{field} must be at most {max_length} characters")
    return v or None
