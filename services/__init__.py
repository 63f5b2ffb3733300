"""External provider integrations."""

from .payment_provider import StripePaymentProvider

__all__ = [
    "StripePaymentProvider",
]
