from collections import OrderedDict
from typing import Any, Dict, List, Optional
from uuid import uuid4
from sqlalchemy.orm import selectinload
from ..db.session import get_session
from ..models.coupon import Coupon
from ..models.order import Order
from ..models.order_item import OrderItem
from ..models.order_status import OrderStatus
from ..models.order_status_history import OrderStatusHistory
from ..models.product import Product
from ..utils.auth import Caller
from ..utils.dto import to_order_dto
from ..utils.pagination import normalize_window, page_info
from ..utils.validators import ensure_non_empty_str, ensure_positive_int, parse_datetime
from ..config import validate_currency
from .coupon_service import evaluate_coupon
from .errors import (
    CouponNotFoundError,
    CouponUsageLimitReachedError,
    ForbiddenError,
    InsufficientStockError,
    InvalidProductError,
    OrderNotFoundError,
    StoreError,
)
from .logging import log_event


class OrderService:
    """Order creation and retrieval backed by DB."""

    def __init__(self, session_factory=get_session, default_currency: str = "USD"):
        self._session_factory = session_factory
        self._default_currency = default_currency

    def create_order(
        self,
        *,
        user_id: str,
        items: Any,
        coupon_code: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Dict:
        """Turn line items into a PENDING order in a single transaction.

        Stock is checked and decremented per product row, the coupon (if any)
        is evaluated against the subtotal and its usage counted, and the
        order, its price-snapshot items and the first history row are
        written. Any failure rolls all of it back.
        """
        lines = _parse_lines(items)
        cur = validate_currency(currency if currency not in (None, "") else self._default_currency)
        if coupon_code is not None and not isinstance(coupon_code, str):
            raise ValueError("coupon_code must be a string")
        code = coupon_code.strip() if coupon_code and coupon_code.strip() else None

        requested: "OrderedDict[str, int]" = OrderedDict()
        for product_id, quantity in lines:
            requested[product_id] = requested.get(product_id, 0) + quantity

        try:
            with self._session_factory() as session:
                products = (
                    session.query(Product)
                    .filter(Product.id.in_(list(requested)), Product.active.is_(True))
                    .order_by(Product.id)
                    .with_for_update()
                    .all()
                )
                by_id = {p.id: p for p in products}
                for product_id in requested:
                    if product_id not in by_id:
                        raise InvalidProductError(product_id)
                for product_id, quantity in requested.items():
                    product = by_id[product_id]
                    if product.stock < quantity:
                        raise InsufficientStockError(product.id, product.name)

                subtotal = sum(by_id[pid].price_cents * qty for pid, qty in lines)
                items_count = sum(qty for _, qty in lines)

                coupon = None
                discount = 0
                if code:
                    coupon = session.query(Coupon).filter(Coupon.code == code).with_for_update().first()
                    if not coupon:
                        raise CouponNotFoundError(code)
                    evaluation = evaluate_coupon(coupon, subtotal)
                    evaluation.raise_for_error()
                    discount = evaluation.discount_cents

                # guarded decrement: the row only changes while enough stock is left
                for product_id in sorted(requested):
                    quantity = requested[product_id]
                    updated = (
                        session.query(Product)
                        .filter(Product.id == product_id, Product.stock >= quantity)
                        .update({Product.stock: Product.stock - quantity}, synchronize_session=False)
                    )
                    if updated != 1:
                        raise InsufficientStockError(product_id, by_id[product_id].name)

                if coupon is not None:
                    counted = (
                        session.query(Coupon)
                        .filter(
                            Coupon.id == coupon.id,
                            (Coupon.usage_limit.is_(None)) | (Coupon.usage_count < Coupon.usage_limit),
                        )
                        .update({Coupon.usage_count: Coupon.usage_count + 1}, synchronize_session=False)
                    )
                    if counted != 1:
                        raise CouponUsageLimitReachedError()

                oid = str(uuid4())
                order = Order(
                    id=oid,
                    user_id=user_id,
                    status=OrderStatus.PENDING,
                    total_cents=subtotal - discount,
                    discount_cents=discount,
                    currency=cur,
                    items_count=items_count,
                    coupon_id=coupon.id if coupon is not None else None,
                    payment_provider="STRIPE",
                )
                session.add(order)
                for position, (product_id, quantity) in enumerate(lines):
                    unit_price = by_id[product_id].price_cents
                    session.add(
                        OrderItem(
                            id=str(uuid4()),
                            order_id=oid,
                            product_id=product_id,
                            position=position,
                            quantity=quantity,
                            unit_price_cents=unit_price,
                            subtotal_cents=unit_price * quantity,
                        )
                    )
                session.add(
                    OrderStatusHistory(
                        id=str(uuid4()),
                        order_id=oid,
                        status=OrderStatus.PENDING,
                        note="Order created",
                    )
                )
                session.flush()
                session.refresh(order)
                log_event(
                    "info",
                    "order.created",
                    order_id=oid,
                    user_id=user_id,
                    items=items_count,
                    subtotal_cents=subtotal,
                    discount_cents=discount,
                    coupon_code=code,
                )
                return to_order_dto(order)
        except StoreError as exc:
            log_event("info", "order.rejected", user_id=user_id, error=exc.kind, message=exc.message)
            raise

    def get_order(self, order_id: str, caller: Caller) -> Dict:
        with self._session_factory() as session:
            order = _load_order(session, order_id)
            _ensure_can_view(order, caller)
            return to_order_dto(order)

    def get_tracking(self, order_id: str, caller: Caller) -> Dict:
        with self._session_factory() as session:
            order = _load_order(session, order_id)
            _ensure_can_view(order, caller)
            return to_order_dto(order, include_history=True)

    def list_orders(self, caller: Caller, *, include_all: bool = False) -> List[Dict]:
        with self._session_factory() as session:
            q = _with_relations(session.query(Order))
            if not (caller.is_admin and include_all):
                q = q.filter(Order.user_id == caller.id)
            rows = q.order_by(Order.created_at.desc()).all()
            return [to_order_dto(o) for o in rows]

    def order_history(
        self,
        caller: Caller,
        *,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Any = None,
        offset: Any = None,
    ) -> Dict:
        """Paged order listing with status/date filters; admins see every user's orders."""
        lim, off = normalize_window(limit, offset)
        start = parse_datetime(start_date, "start_date") if start_date else None
        end = parse_datetime(end_date, "end_date") if end_date else None
        if start and end and end <= start:
            raise ValueError("end_date must be after start_date")

        with self._session_factory() as session:
            q = session.query(Order)
            if not caller.is_admin:
                q = q.filter(Order.user_id == caller.id)
            if status:
                q = q.filter(Order.status == OrderStatus.parse(status))
            if start:
                q = q.filter(Order.created_at >= start)
            if end:
                q = q.filter(Order.created_at <= end)
            total = q.count()
            rows = (
                _with_relations(q)
                .order_by(Order.created_at.desc())
                .offset(off)
                .limit(lim)
                .all()
            )
            return {
                "orders": [to_order_dto(o, include_history=True, latest_history_only=True) for o in rows],
                "pagination": page_info(total, lim, off),
            }


def _parse_lines(items: Any) -> List[tuple]:
    if not isinstance(items, list) or not items:
        raise ValueError("items must be a non-empty list")
    lines = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"items[{idx}] must be an object")
        product_id = ensure_non_empty_str(item.get("product_id"), f"items[{idx}].product_id")
        quantity = ensure_positive_int(item.get("quantity"), f"items[{idx}].quantity")
        lines.append((product_id, quantity))
    return lines


def _with_relations(q):
    return q.options(
        selectinload(Order.items),
        selectinload(Order.coupon),
        selectinload(Order.status_history),
    )


def _load_order(session, order_id: str) -> Order:
    order = _with_relations(session.query(Order)).filter(Order.id == order_id).first()
    if not order:
        raise OrderNotFoundError(order_id)
    return order


def _ensure_can_view(order: Order, caller: Caller) -> None:
    if not caller.is_admin and order.user_id != caller.id:
        raise ForbiddenError()
