"""Failures raised by the order, coupon and payment services.

Every class carries a stable ``kind`` (rendered to clients as ``error``) and
the HTTP status routes answer with.
"""

from typing import Optional


class StoreError(Exception):
    kind = "StoreError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class UnauthorizedError(StoreError):
    kind = "Unauthorized"
    status_code = 401


class ForbiddenError(StoreError):
    kind = "Forbidden"
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class InvalidProductError(StoreError):
    kind = "InvalidProduct"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Invalid product {product_id}")


class InsufficientStockError(StoreError):
    kind = "InsufficientStock"

    def __init__(self, product_id: str, name: Optional[str] = None):
        self.product_id = product_id
        super().__init__(f"Insufficient stock for product {name or product_id}")


class OrderNotFoundError(StoreError):
    kind = "OrderNotFound"
    status_code = 404

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class OrderNotCancellableError(StoreError):
    kind = "OrderNotCancellable"

    def __init__(self, status: str):
        self.status = status
        super().__init__(
            f"Cannot cancel order with status {status}. Only PENDING or PAID orders can be cancelled."
        )


class OrderNotPayableError(StoreError):
    kind = "OrderNotPayable"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Order not payable in status {status}")


class PaymentNotConfiguredError(StoreError):
    kind = "PaymentNotConfigured"
    status_code = 500

    def __init__(self, message: str = "Stripe is not configured"):
        super().__init__(message)


class WebhookSignatureInvalidError(StoreError):
    kind = "WebhookSignatureInvalid"


class CouponError(StoreError):
    """Base for every reason a coupon cannot be applied."""

    kind = "CouponError"


class CouponNotFoundError(CouponError):
    kind = "CouponNotFound"
    status_code = 404

    def __init__(self, code: Optional[str] = None):
        self.code = code
        super().__init__("Coupon not found")


class CouponInactiveError(CouponError):
    kind = "CouponInactive"

    def __init__(self):
        super().__init__("Coupon is not active")


class CouponNotYetValidError(CouponError):
    kind = "CouponNotYetValid"

    def __init__(self):
        super().__init__("Coupon is not yet valid")


class CouponExpiredError(CouponError):
    kind = "CouponExpired"

    def __init__(self):
        super().__init__("Coupon has expired")


class CouponUsageLimitReachedError(CouponError):
    kind = "CouponUsageLimitReached"

    def __init__(self):
        super().__init__("Coupon usage limit reached")


class CouponMinimumPurchaseNotMetError(CouponError):
    kind = "CouponMinimumPurchaseNotMet"

    def __init__(self, min_purchase: int):
        self.min_purchase = min_purchase
        super().__init__(f"Minimum purchase of {min_purchase / 100:.2f} required")


class CouponCodeTakenError(CouponError):
    kind = "CouponCodeTaken"
    status_code = 409

    def __init__(self, code: str):
        self.code = code
        super().__init__("Coupon code already exists")
