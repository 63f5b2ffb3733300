import threading
from datetime import timedelta

import pytest

from common.models.product import Product
from common.services import order_service as order_service_module
from common.services.coupon_service import CouponEvaluation
from common.services.errors import (
    CouponExpiredError,
    CouponMinimumPurchaseNotMetError,
    CouponNotFoundError,
    CouponUsageLimitReachedError,
    ForbiddenError,
    InsufficientStockError,
    InvalidProductError,
    OrderNotFoundError,
)
from common.utils.auth import Caller
from common.utils.clock import utcnow


def test_create_order_snapshots_prices_and_decrements_stock(order_service, make_product, stock_of):
    p1 = make_product(stock=10, price_cents=1000)
    p2 = make_product(stock=5, price_cents=250)

    order = order_service.create_order(
        user_id="user-1",
        items=[{"product_id": p1, "quantity": 2}, {"product_id": p2, "quantity": 3}],
    )

    assert order["status"] == "PENDING"
    assert order["total_cents"] == 2750
    assert order["discount_cents"] == 0
    assert order["items_count"] == 5
    assert order["currency"] == "USD"
    assert order["coupon"] is None
    assert [(i["product_id"], i["quantity"], i["unit_price_cents"], i["subtotal_cents"]) for i in order["items"]] == [
        (p1, 2, 1000, 2000),
        (p2, 3, 250, 750),
    ]
    assert stock_of(p1) == 8
    assert stock_of(p2) == 2


def test_create_order_writes_initial_history(order_service, make_product, user):
    pid = make_product()
    order = order_service.create_order(user_id=user.id, items=[{"product_id": pid, "quantity": 1}])

    tracked = order_service.get_tracking(order["id"], user)
    assert [(h["status"], h["note"]) for h in tracked["status_history"]] == [("PENDING", "Order created")]


def test_price_change_does_not_touch_existing_orders(order_service, make_product, session_factory, user):
    pid = make_product(price_cents=1000)
    order = order_service.create_order(user_id=user.id, items=[{"product_id": pid, "quantity": 1}])

    with session_factory() as session:
        session.query(Product).filter(Product.id == pid).update({Product.price_cents: 5000})

    again = order_service.get_order(order["id"], user)
    assert again["items"][0]["unit_price_cents"] == 1000
    assert again["total_cents"] == 1000


def test_unknown_product_rejected(order_service, make_product, stock_of, row_counts):
    pid = make_product(stock=3)
    with pytest.raises(InvalidProductError) as exc:
        order_service.create_order(
            user_id="user-1",
            items=[{"product_id": pid, "quantity": 1}, {"product_id": "missing", "quantity": 1}],
        )
    assert exc.value.product_id == "missing"
    assert stock_of(pid) == 3
    assert row_counts() == {"orders": 0, "items": 0, "history": 0}


def test_inactive_product_treated_as_invalid(order_service, make_product):
    pid = make_product(active=False)
    with pytest.raises(InvalidProductError):
        order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}])


def test_insufficient_stock_leaves_everything_untouched(order_service, make_product, stock_of, row_counts):
    plenty = make_product(stock=5)
    scarce = make_product(stock=1, name="Scarce")

    with pytest.raises(InsufficientStockError) as exc:
        order_service.create_order(
            user_id="user-1",
            items=[{"product_id": plenty, "quantity": 2}, {"product_id": scarce, "quantity": 2}],
        )

    assert exc.value.message == "Insufficient stock for product Scarce"
    assert stock_of(plenty) == 5
    assert stock_of(scarce) == 1
    assert row_counts() == {"orders": 0, "items": 0, "history": 0}


def test_repeated_product_lines_checked_against_combined_quantity(order_service, make_product, stock_of):
    pid = make_product(stock=3)
    with pytest.raises(InsufficientStockError):
        order_service.create_order(
            user_id="user-1",
            items=[{"product_id": pid, "quantity": 2}, {"product_id": pid, "quantity": 2}],
        )
    assert stock_of(pid) == 3

    order = order_service.create_order(
        user_id="user-1",
        items=[{"product_id": pid, "quantity": 1}, {"product_id": pid, "quantity": 2}],
    )
    assert len(order["items"]) == 2
    assert stock_of(pid) == 0


def test_exact_stock_can_be_ordered(order_service, make_product, stock_of):
    pid = make_product(stock=4)
    order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 4}])
    assert stock_of(pid) == 0


@pytest.mark.parametrize(
    "items",
    [
        None,
        [],
        "abc",
        [{"product_id": "x", "quantity": 0}],
        [{"product_id": "x", "quantity": -1}],
        [{"product_id": "x", "quantity": True}],
        [{"product_id": "", "quantity": 1}],
        [{"quantity": 1}],
    ],
)
def test_malformed_items_rejected(order_service, items):
    with pytest.raises(ValueError):
        order_service.create_order(user_id="user-1", items=items)


@pytest.mark.parametrize("coupon_code", [123, 0, ["SAVE10"], {"code": "SAVE10"}])
def test_non_string_coupon_code_rejected(
    order_service, make_product, make_coupon, stock_of, coupon_usage, row_counts, coupon_code
):
    pid = make_product(stock=5)
    cid = make_coupon(code="123")

    with pytest.raises(ValueError, match="coupon_code must be a string"):
        order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], coupon_code=coupon_code)

    assert stock_of(pid) == 5
    assert coupon_usage(cid) == 0
    assert row_counts() == {"orders": 0, "items": 0, "history": 0}


@pytest.mark.parametrize("currency", [5, 0, ["USD"], "US", "12$"])
def test_bad_currency_rejected(order_service, make_product, stock_of, currency):
    pid = make_product(stock=5)
    with pytest.raises(ValueError):
        order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], currency=currency)
    assert stock_of(pid) == 5


def test_currency_defaults_and_normalizes(order_service, make_product):
    pid = make_product(stock=5)
    assert order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}])["currency"] == "USD"
    eur = order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], currency=" eur ")
    assert eur["currency"] == "EUR"


def test_coupon_applied_and_counted(order_service, make_product, make_coupon, coupon_usage):
    pid = make_product(price_cents=2000)
    cid = make_coupon(code="TENOFF", discount_value=10, usage_limit=5)

    order = order_service.create_order(
        user_id="user-1", items=[{"product_id": pid, "quantity": 2}], coupon_code="TENOFF"
    )

    assert order["discount_cents"] == 400
    assert order["total_cents"] == 3600
    assert order["coupon_id"] == cid
    assert order["coupon"]["code"] == "TENOFF"
    assert coupon_usage(cid) == 1


def test_blank_coupon_code_is_ignored(order_service, make_product):
    pid = make_product()
    order = order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], coupon_code="  ")
    assert order["coupon_id"] is None


def test_unknown_coupon_rolls_back(order_service, make_product, stock_of, row_counts):
    pid = make_product(stock=2)
    with pytest.raises(CouponNotFoundError):
        order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], coupon_code="NOPE")
    assert stock_of(pid) == 2
    assert row_counts()["orders"] == 0


def test_invalid_coupon_rolls_back(order_service, make_product, make_coupon, stock_of, coupon_usage):
    pid = make_product(stock=2, price_cents=1000)
    expired = make_coupon(code="OLD", valid_until=utcnow() - timedelta(hours=1))
    min_buy = make_coupon(code="BIGSPEND", min_purchase=50000)

    with pytest.raises(CouponExpiredError):
        order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], coupon_code="OLD")
    with pytest.raises(CouponMinimumPurchaseNotMetError):
        order_service.create_order(
            user_id="user-1", items=[{"product_id": pid, "quantity": 1}], coupon_code="BIGSPEND"
        )

    assert stock_of(pid) == 2
    assert coupon_usage(expired) == 0
    assert coupon_usage(min_buy) == 0


def test_coupon_usage_limit_enforced_across_orders(order_service, make_product, make_coupon, coupon_usage):
    pid = make_product(stock=10)
    cid = make_coupon(code="ONCE", usage_limit=1)

    order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 1}], coupon_code="ONCE")
    with pytest.raises(CouponUsageLimitReachedError):
        order_service.create_order(user_id="user-2", items=[{"product_id": pid, "quantity": 1}], coupon_code="ONCE")
    assert coupon_usage(cid) == 1


def test_failure_after_stock_decrement_rolls_back(
    order_service, make_product, make_coupon, stock_of, coupon_usage, row_counts, monkeypatch
):
    pid = make_product(stock=4)
    cid = make_coupon(code="SPENT", usage_limit=1, usage_count=1)
    # let the coupon through evaluation so the guarded usage update is what fails
    monkeypatch.setattr(order_service_module, "evaluate_coupon", lambda coupon, total: CouponEvaluation(True, 100))

    with pytest.raises(CouponUsageLimitReachedError):
        order_service.create_order(user_id="user-1", items=[{"product_id": pid, "quantity": 3}], coupon_code="SPENT")

    assert stock_of(pid) == 4
    assert coupon_usage(cid) == 1
    assert row_counts() == {"orders": 0, "items": 0, "history": 0}


def test_concurrent_orders_for_last_unit_do_not_oversell(order_service, make_product, stock_of, row_counts):
    pid = make_product(stock=1)
    contenders = 6
    barrier = threading.Barrier(contenders)
    outcomes = []
    lock = threading.Lock()

    def place(n):
        barrier.wait()
        try:
            order_service.create_order(user_id=f"user-{n}", items=[{"product_id": pid, "quantity": 1}])
            outcome = "created"
        except InsufficientStockError:
            outcome = "insufficient"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=place, args=(n,)) for n in range(contenders)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["created"] + ["insufficient"] * (contenders - 1)
    assert stock_of(pid) == 0
    assert row_counts()["orders"] == 1


def test_get_order_visibility(order_service, make_product, user, other_user, admin):
    pid = make_product()
    order = order_service.create_order(user_id=user.id, items=[{"product_id": pid, "quantity": 1}])

    assert order_service.get_order(order["id"], user)["id"] == order["id"]
    assert order_service.get_order(order["id"], admin)["id"] == order["id"]
    with pytest.raises(ForbiddenError):
        order_service.get_order(order["id"], other_user)
    with pytest.raises(OrderNotFoundError):
        order_service.get_order("does-not-exist", admin)


def test_list_orders_scoping(order_service, make_product, user, other_user, admin):
    pid = make_product(stock=10)
    mine = order_service.create_order(user_id=user.id, items=[{"product_id": pid, "quantity": 1}])
    order_service.create_order(user_id=other_user.id, items=[{"product_id": pid, "quantity": 1}])

    assert [o["id"] for o in order_service.list_orders(user)] == [mine["id"]]
    assert [o["id"] for o in order_service.list_orders(user, include_all=True)] == [mine["id"]]
    assert order_service.list_orders(admin) == []
    assert len(order_service.list_orders(admin, include_all=True)) == 2


def test_order_history_pagination_and_filters(order_service, make_product, user, admin):
    pid = make_product(stock=10)
    ids = [
        order_service.create_order(user_id=user.id, items=[{"product_id": pid, "quantity": 1}])["id"]
        for _ in range(3)
    ]

    page = order_service.order_history(user, limit="2", offset="0")
    assert [o["id"] for o in page["orders"]] == [ids[2], ids[1]]
    assert page["pagination"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}
    assert len(page["orders"][0]["status_history"]) == 1

    rest = order_service.order_history(user, limit=2, offset=2)
    assert [o["id"] for o in rest["orders"]] == [ids[0]]
    assert rest["pagination"]["has_more"] is False

    assert order_service.order_history(user, status="paid")["pagination"]["total"] == 0
    assert order_service.order_history(admin, status="PENDING")["pagination"]["total"] == 3

    future = (utcnow() + timedelta(days=1)).isoformat() + "Z"
    past = (utcnow() - timedelta(days=1)).isoformat() + "Z"
    assert order_service.order_history(user, start_date=future)["pagination"]["total"] == 0
    assert order_service.order_history(user, start_date=past, end_date=future)["pagination"]["total"] == 3


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit": "0"},
        {"limit": "101"},
        {"limit": "abc"},
        {"offset": "-1"},
        {"offset": "10001"},
        {"status": "SHIPPED"},
        {"start_date": "yesterday"},
        {"start_date": "2025-02-01T00:00:00Z", "end_date": "2025-01-01T00:00:00Z"},
    ],
)
def test_order_history_rejects_bad_queries(order_service, kwargs):
    with pytest.raises(ValueError):
        order_service.order_history(Caller(id="user-1"), **kwargs)
