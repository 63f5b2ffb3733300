from typing import Any, Dict, Optional
from .clock import isoformat


def _status_value(status: Any) -> Optional[str]:
    return getattr(status, "value", status)


def to_order_item_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "product_id": row.product_id,
        "quantity": row.quantity,
        "unit_price_cents": row.unit_price_cents,
        "subtotal_cents": row.subtotal_cents,
    }


def to_history_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "status": _status_value(row.status),
        "note": row.note,
        "created_at": isoformat(row.created_at),
    }


def to_coupon_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "code": row.code,
        "description": row.description,
        "discount_type": row.discount_type,
        "discount_value": row.discount_value,
        "min_purchase": row.min_purchase,
        "max_discount": row.max_discount,
        "usage_limit": row.usage_limit,
        "usage_count": row.usage_count or 0,
        "valid_from": isoformat(row.valid_from),
        "valid_until": isoformat(row.valid_until),
        "active": bool(row.active),
    }


def to_coupon_summary_dto(row: Any) -> Dict:
    """Coupon fields that are safe to show to shoppers."""
    return {
        "id": row.id,
        "code": row.code,
        "description": row.description,
        "discount_type": row.discount_type,
        "discount_value": row.discount_value,
    }


def to_order_dto(row: Any, *, include_history: bool = False, latest_history_only: bool = False) -> Dict:
    data = {
        "id": row.id,
        "user_id": row.user_id,
        "status": _status_value(row.status),
        "total_cents": row.total_cents,
        "discount_cents": row.discount_cents or 0,
        "currency": row.currency,
        "items_count": row.items_count,
        "coupon_id": row.coupon_id,
        "coupon": to_coupon_summary_dto(row.coupon) if row.coupon is not None else None,
        "payment_provider": row.payment_provider,
        "payment_intent_id": row.payment_intent_id,
        "tracking_number": row.tracking_number,
        "shipped_at": isoformat(row.shipped_at),
        "delivered_at": isoformat(row.delivered_at),
        "created_at": isoformat(row.created_at),
        "updated_at": isoformat(row.updated_at),
        "items": [to_order_item_dto(it) for it in row.items],
    }
    if include_history:
        history = list(row.status_history)
        if latest_history_only:
            history = history[:1]
        data["status_history"] = [to_history_dto(h) for h in history]
    return data
