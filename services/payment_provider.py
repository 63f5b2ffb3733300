"""Stripe integration: webhook verification and hosted checkout sessions."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

import stripe

from common.services.errors import PaymentNotConfiguredError, WebhookSignatureInvalidError
from common.services.payment_service import PaymentEvent, PaymentEventKind


CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"


class StripePaymentProvider:
    """Thin wrapper over the stripe SDK.

    ``parse_event`` turns a raw webhook delivery into a ``PaymentEvent`` once
    the ``Stripe-Signature`` header checks out; nothing downstream touches
    the raw payload.
    """

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str]) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    @property
    def accepts_webhooks(self) -> bool:
        return bool(self._secret_key and self._webhook_secret)

    def parse_event(self, payload: Union[bytes, str], signature: Optional[str]) -> PaymentEvent:
        if not self.accepts_webhooks:
            raise PaymentNotConfiguredError("Stripe webhook not configured")
        if not signature:
            raise WebhookSignatureInvalidError("Missing signature")

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureInvalidError(f"Webhook Error: {exc}") from None

        try:
            data = json.loads(body)
        except ValueError:
            raise WebhookSignatureInvalidError("Webhook Error: invalid payload") from None
        return event_from_payload(data)

    def create_checkout_session(
        self,
        *,
        order_id: str,
        currency: str,
        lines: List[Dict[str, Any]],
        total_cents: int,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> str:
        if not self.is_configured:
            raise PaymentNotConfiguredError()
        cur = currency.lower()
        if sum(line["unit_amount"] * line["quantity"] for line in lines) == total_cents:
            line_items = [
                {
                    "price_data": {
                        "currency": cur,
                        "unit_amount": line["unit_amount"],
                        "product_data": {"name": line["name"]},
                    },
                    "quantity": line["quantity"],
                }
                for line in lines
            ]
        else:
            # discounted order: charge the stored total as one line
            line_items = [
                {
                    "price_data": {
                        "currency": cur,
                        "unit_amount": total_cents,
                        "product_data": {"name": f"Order {order_id}"},
                    },
                    "quantity": 1,
                }
            ]
        session = stripe.checkout.Session.create(
            api_key=self._secret_key,
            idempotency_key=f"order_{order_id}",
            mode="payment",
            line_items=line_items,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"order_id": order_id},
        )
        return session.url


def event_from_payload(data: Dict[str, Any]) -> PaymentEvent:
    event_type = data.get("type")
    obj = (data.get("data") or {}).get("object") or {}
    if event_type == CHECKOUT_COMPLETED:
        metadata = obj.get("metadata") or {}
        return PaymentEvent(
            kind=PaymentEventKind.CHECKOUT_COMPLETED,
            event_id=data.get("id"),
            event_type=event_type,
            order_id=metadata.get("order_id") or metadata.get("orderId"),
            payment_reference=_reference(obj.get("payment_intent")),
        )
    if event_type == PAYMENT_FAILED:
        return PaymentEvent(
            kind=PaymentEventKind.PAYMENT_FAILED,
            event_id=data.get("id"),
            event_type=event_type,
            payment_reference=obj.get("id"),
        )
    return PaymentEvent(kind=PaymentEventKind.IGNORED, event_id=data.get("id"), event_type=event_type)


def _reference(value: Any) -> Optional[str]:
    # payment_intent arrives as an id, or as an object when expanded
    if isinstance(value, dict):
        return value.get("id")
    return value or None
