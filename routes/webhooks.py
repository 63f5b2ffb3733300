"""Payment provider callbacks."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from common.services.errors import PaymentNotConfiguredError


webhooks_bp = Blueprint("store_webhooks", __name__, url_prefix="/api/payments")


@webhooks_bp.post("/stripe/webhook")
def stripe_webhook():
    components = current_app.extensions["store_components"]
    provider = components.get("payment_provider")
    if provider is None:
        raise PaymentNotConfiguredError("Stripe webhook not configured")
    # signature covers the exact bytes sent, so read the raw body
    event = provider.parse_event(request.get_data(), request.headers.get("Stripe-Signature"))
    result = components["payment_service"].handle_event(event)
    return jsonify({"received": result["received"]})
