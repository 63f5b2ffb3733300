"""Storefront order service Flask application."""

from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify

from common.config import AppConfig, load_env
from common.db.session import build_engine, init_db, make_session_factory
from common.services.coupon_service import CouponService
from common.services.errors import StoreError
from common.services.logging import log_event, set_log_level
from common.services.order_service import OrderService
from common.services.order_status_service import OrderStatusService
from common.services.payment_service import PaymentService
from routes import admin, api, webhooks
from services import StripePaymentProvider


def create_app(
    config: Optional[AppConfig] = None,
    session_factory=None,
    payment_provider=None,
) -> Flask:
    config = config or load_env()
    set_log_level(config.log_level)

    if session_factory is None:
        engine = build_engine(config.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
    if payment_provider is None and config.stripe_secret_key:
        payment_provider = StripePaymentProvider(config.stripe_secret_key, config.stripe_webhook_secret)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STORE_CONFIG"] = config

    components = {
        "order_service": OrderService(session_factory, default_currency=config.currency),
        "order_status_service": OrderStatusService(session_factory),
        "coupon_service": CouponService(session_factory),
        "payment_service": PaymentService(
            session_factory,
            provider=payment_provider,
            checkout_urls=config.checkout_urls,
        ),
        "payment_provider": payment_provider,
    }
    app.extensions["store_components"] = components

    app.register_blueprint(api.api_bp)
    app.register_blueprint(admin.admin_bp)
    app.register_blueprint(webhooks.webhooks_bp)

    @app.errorhandler(StoreError)
    def handle_store_error(exc: StoreError):
        if exc.status_code >= 500:
            log_event("error", "request.failed", error=exc.kind, message=exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=4000, debug=False)


if __name__ == "__main__":
    main()
