import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
from ..db.session import get_session
from ..models.coupon import DISCOUNT_PERCENTAGE, DISCOUNT_TYPES, Coupon
from ..models.order import Order
from ..utils.clock import utcnow
from ..utils.dto import to_coupon_dto, to_coupon_summary_dto
from ..utils.validators import (
    ensure_non_empty_str,
    ensure_non_negative_int,
    ensure_positive_int,
    optional_non_negative_int,
    parse_datetime,
)
from .errors import (
    CouponCodeTakenError,
    CouponError,
    CouponExpiredError,
    CouponInactiveError,
    CouponMinimumPurchaseNotMetError,
    CouponNotFoundError,
    CouponNotYetValidError,
    CouponUsageLimitReachedError,
)
from .logging import log_event


CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_DISCOUNT_VALUE = 10000


@dataclass(frozen=True)
class CouponEvaluation:
    valid: bool
    discount_cents: int
    error: Optional[CouponError] = None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def evaluate_coupon(coupon: Any, purchase_total_cents: int, now: Optional[datetime] = None) -> CouponEvaluation:
    """Check a coupon against a purchase total and compute its discount.

    Checks run in a fixed order and the first failure wins: active flag,
    validity window, usage limit, minimum purchase. ``None`` is the only
    "no limit" value for ``usage_limit``, ``min_purchase`` and
    ``max_discount``; zero is a real limit. The discount never exceeds the
    purchase total.

    Order creation and the coupon preview both go through here so the
    previewed discount is the one charged.
    """
    now = now or utcnow()

    if not coupon.active:
        return CouponEvaluation(False, 0, CouponInactiveError())
    if now < coupon.valid_from:
        return CouponEvaluation(False, 0, CouponNotYetValidError())
    if now > coupon.valid_until:
        return CouponEvaluation(False, 0, CouponExpiredError())
    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return CouponEvaluation(False, 0, CouponUsageLimitReachedError())
    if coupon.min_purchase is not None and purchase_total_cents < coupon.min_purchase:
        return CouponEvaluation(False, 0, CouponMinimumPurchaseNotMetError(coupon.min_purchase))

    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = (purchase_total_cents * coupon.discount_value) // 100
        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
    else:
        discount = coupon.discount_value

    discount = max(0, min(discount, purchase_total_cents))
    return CouponEvaluation(True, discount)


class CouponService:
    """Coupon administration and the shopper-facing coupon preview."""

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def validate_coupon(self, *, code: Any, total_cents: Any) -> Dict:
        code = ensure_non_empty_str(code, "code")
        total = ensure_non_negative_int(total_cents, "total_cents")
        with self._session_factory() as session:
            coupon = session.query(Coupon).filter(Coupon.code == code).first()
            if not coupon:
                raise CouponNotFoundError(code)
            result = evaluate_coupon(coupon, total)
            result.raise_for_error()
            # preview only: usage_count moves when an order applies the coupon
            return {
                "valid": True,
                "coupon": to_coupon_summary_dto(coupon),
                "discount_cents": result.discount_cents,
                "final_total_cents": total - result.discount_cents,
            }

    def list_coupons(self) -> List[Dict]:
        with self._session_factory() as session:
            rows = session.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.code).all()
            return [to_coupon_dto(r) for r in rows]

    def create_coupon(self, payload: Dict) -> Dict:
        fields = _coupon_fields(payload or {}, partial=False)
        with self._session_factory() as session:
            if session.query(Coupon.id).filter(Coupon.code == fields["code"]).first():
                raise CouponCodeTakenError(fields["code"])
            coupon = Coupon(id=str(uuid4()), usage_count=0, **fields)
            session.add(coupon)
            session.flush()
            log_event("info", "coupon.created", coupon_id=coupon.id, code=coupon.code)
            return to_coupon_dto(coupon)

    def update_coupon(self, coupon_id: str, payload: Dict) -> Dict:
        fields = _coupon_fields(payload or {}, partial=True)
        with self._session_factory() as session:
            coupon = session.query(Coupon).filter(Coupon.id == coupon_id).first()
            if not coupon:
                raise CouponNotFoundError()
            new_code = fields.get("code")
            if new_code and new_code != coupon.code:
                if session.query(Coupon.id).filter(Coupon.code == new_code).first():
                    raise CouponCodeTakenError(new_code)

            discount_type = fields.get("discount_type", coupon.discount_type)
            discount_value = fields.get("discount_value", coupon.discount_value)
            if discount_type == DISCOUNT_PERCENTAGE and discount_value > 100:
                if "discount_value" in fields:
                    raise ValueError("discount_value must be <= 100 for PERCENTAGE type")
                raise ValueError("Cannot change discount_type to PERCENTAGE: existing discount_value exceeds 100")
            valid_from = fields.get("valid_from", coupon.valid_from)
            valid_until = fields.get("valid_until", coupon.valid_until)
            if valid_until <= valid_from:
                raise ValueError("valid_until must be after valid_from")

            for key, value in fields.items():
                setattr(coupon, key, value)
            coupon.updated_at = utcnow()
            session.flush()
            log_event("info", "coupon.updated", coupon_id=coupon.id, fields=sorted(fields))
            return to_coupon_dto(coupon)

    def delete_coupon(self, coupon_id: str) -> None:
        with self._session_factory() as session:
            coupon = session.query(Coupon).filter(Coupon.id == coupon_id).first()
            if not coupon:
                raise CouponNotFoundError()
            # orders keep their discount but lose the link
            session.query(Order).filter(Order.coupon_id == coupon.id).update(
                {Order.coupon_id: None}, synchronize_session=False
            )
            session.delete(coupon)
            session.flush()
            log_event("info", "coupon.deleted", coupon_id=coupon_id, code=coupon.code)
        return None


def _coupon_fields(payload: Dict, *, partial: bool) -> Dict:
    fields: Dict[str, Any] = {}

    def present(key: str) -> bool:
        return key in payload if partial else True

    if present("code"):
        code = ensure_non_empty_str(payload.get("code"), "code", max_length=50)
        if not CODE_PATTERN.match(code):
            raise ValueError("Coupon code can only contain letters, numbers, hyphens, and underscores")
        fields["code"] = code
    if "description" in payload:
        description = payload.get("description")
        if description is not None and (not isinstance(description, str) or len(description) > 500):
            raise ValueError("description must be a string of at most 500 characters")
        fields["description"] = description or None
    if present("discount_type"):
        discount_type = str(payload.get("discount_type") or "").upper()
        if discount_type not in DISCOUNT_TYPES:
            raise ValueError("discount_type must be either PERCENTAGE or FIXED_AMOUNT")
        fields["discount_type"] = discount_type
    if present("discount_value"):
        value = ensure_positive_int(payload.get("discount_value"), "discount_value")
        if value > MAX_DISCOUNT_VALUE:
            raise ValueError(f"discount_value cannot exceed {MAX_DISCOUNT_VALUE}")
        if not partial and fields["discount_type"] == DISCOUNT_PERCENTAGE and value > 100:
            raise ValueError("Percentage discount must be between 1 and 100")
        fields["discount_value"] = value
    for key in ("min_purchase", "max_discount", "usage_limit"):
        if key in payload:
            fields[key] = optional_non_negative_int(payload.get(key), key)
    if present("valid_from"):
        fields["valid_from"] = parse_datetime(payload.get("valid_from"), "valid_from")
    if present("valid_until"):
        fields["valid_until"] = parse_datetime(payload.get("valid_until"), "valid_until")
    if not partial and fields["valid_until"] <= fields["valid_from"]:
        raise ValueError("valid_until must be after valid_from")
    if "active" in payload:
        if not isinstance(payload.get("active"), bool):
            raise ValueError("active must be a boolean")
        fields["active"] = payload["active"]
    elif not partial:
        fields["active"] = True
    return fields
