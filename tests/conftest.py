import hashlib
import hmac
import json
import time
from datetime import timedelta
from uuid import uuid4

import jwt
import pytest

from app import create_app
from common.config import AppConfig
from common.db.session import build_engine, init_db, make_session_factory
from common.models.coupon import Coupon
from common.models.order import Order
from common.models.order_item import OrderItem
from common.models.order_status_history import OrderStatusHistory
from common.models.product import Product
from common.services.coupon_service import CouponService
from common.services.order_service import OrderService
from common.services.order_status_service import OrderStatusService
from common.services.payment_service import PaymentService
from common.utils.auth import ROLE_ADMIN, Caller
from common.utils.clock import utcnow
from services.payment_provider import StripePaymentProvider


JWT_SECRET = "test-access-secret-with-at-least-32-chars"
WEBHOOK_SECRET = "whsec_test_webhook_secret"


class FakeStripeProvider(StripePaymentProvider):
    """Real webhook verification, recorded checkout sessions."""

    def __init__(self, secret_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET):
        super().__init__(secret_key, webhook_secret)
        self.calls = []

    def create_checkout_session(self, **kwargs):
        self.calls.append(kwargs)
        return f"https://checkout.stripe.test/session/{kwargs['order_id']}"


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def auth_header(user_id: str, role: str = "USER") -> dict:
    token = jwt.encode({"id": user_id, "role": role, "email": f"{user_id}@example.com"}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def order_service(session_factory):
    return OrderService(session_factory)


@pytest.fixture
def status_service(session_factory):
    return OrderStatusService(session_factory)


@pytest.fixture
def coupon_service(session_factory):
    return CouponService(session_factory)


@pytest.fixture
def provider():
    return FakeStripeProvider()


@pytest.fixture
def payment_service(session_factory, provider):
    return PaymentService(session_factory, provider=provider)


@pytest.fixture
def user():
    return Caller(id="user-1")


@pytest.fixture
def other_user():
    return Caller(id="user-2")


@pytest.fixture
def admin():
    return Caller(id="admin-1", role=ROLE_ADMIN)


@pytest.fixture
def make_product(session_factory):
    def _make(stock=10, price_cents=1000, active=True, name=None):
        pid = str(uuid4())
        with session_factory() as session:
            session.add(
                Product(
                    id=pid,
                    name=name or f"Product {pid[:8]}",
                    price_cents=price_cents,
                    stock=stock,
                    active=active,
                )
            )
        return pid

    return _make


@pytest.fixture
def make_coupon(session_factory):
    def _make(code="SAVE10", **overrides):
        now = utcnow()
        fields = {
            "discount_type": "PERCENTAGE",
            "discount_value": 10,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=1),
            "active": True,
            "usage_count": 0,
        }
        fields.update(overrides)
        cid = str(uuid4())
        with session_factory() as session:
            session.add(Coupon(id=cid, code=code, **fields))
        return cid

    return _make


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as session:
            return session.query(Product).filter(Product.id == product_id).one().stock

    return _stock


@pytest.fixture
def coupon_usage(session_factory):
    def _usage(coupon_id):
        with session_factory() as session:
            return session.query(Coupon).filter(Coupon.id == coupon_id).one().usage_count

    return _usage


@pytest.fixture
def row_counts(session_factory):
    def _counts():
        with session_factory() as session:
            return {
                "orders": session.query(Order).count(),
                "items": session.query(OrderItem).count(),
                "history": session.query(OrderStatusHistory).count(),
            }

    return _counts


@pytest.fixture
def config():
    return AppConfig(
        database_url="sqlite://",
        secret_key="test-secret",
        jwt_access_secret=JWT_SECRET,
        log_level="WARNING",
        currency="USD",
        client_url="http://localhost:3000",
        stripe_secret_key="sk_test_fake",
        stripe_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def app(config, session_factory, provider):
    app = create_app(config, session_factory=session_factory, payment_provider=provider)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def webhook_body():
    def _body(event_type, obj, event_id=None):
        return json.dumps({"id": event_id or f"evt_{uuid4().hex[:12]}", "type": event_type, "data": {"object": obj}})

    return _body
