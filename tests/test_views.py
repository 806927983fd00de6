"""Buyer, seller and admin projections of the order ledger."""

from datetime import timedelta

import pytest

import orders
from conftest import order_request
from database import utcnow
from errors import AuthorizationError


@pytest.fixture()
def shared_order(db, buyer, seller, other_seller, make_listing):
    """One checkout spanning two sellers."""
    mine = make_listing(price=100.0, stock=5)
    theirs = make_listing(seller_id=other_seller.id, price=30.0, stock=5, delivery_days=9)
    return orders.place_order(db, buyer.id, order_request((mine["id"], 2), (theirs["id"], 1)))


def test_buyer_sees_own_orders_newest_first(db, buyer, other_buyer, make_listing):
    gem = make_listing(stock=10, delivery_days=4)
    first = orders.place_order(db, buyer.id, order_request((gem["id"], 1)))
    second = orders.place_order(db, buyer.id, order_request((gem["id"], 1)))
    orders.place_order(db, other_buyer.id, order_request((gem["id"], 1)))

    views, total = orders.buyer_orders(db, buyer.id)
    assert total == 2
    assert [v["id"] for v in views] == [second["id"], first["id"]]
    assert views[0]["delivery_days"] == 4
    assert views[0]["expected_delivery"] - views[0]["created_at"] == timedelta(days=4)


def test_buyer_status_filter(db, buyer, make_listing):
    gem = make_listing(stock=10)
    keep = orders.place_order(db, buyer.id, order_request((gem["id"], 1)))
    drop = orders.place_order(db, buyer.id, order_request((gem["id"], 1)))
    orders.cancel_order(db, drop["id"], buyer)

    views, total = orders.buyer_orders(db, buyer.id, status="pending")
    assert total == 1
    assert views[0]["id"] == keep["id"]


def test_seller_sees_only_own_lines(db, shared_order, seller, other_seller):
    views, total = orders.seller_orders(db, other_seller.id)
    assert total == 1
    view = views[0]
    assert [i["seller"] for i in view["items"]] == [other_seller.id]
    assert view["items"][0]["subtotal"] == 30.0
    assert view["subtotal"] == 30.0
    assert "total_price" not in view

    views, _ = orders.seller_orders(db, seller.id)
    assert views[0]["subtotal"] == 200.0


def test_seller_without_lines_sees_nothing(db, shared_order):
    assert orders.seller_orders(db, "seller-99") == ([], 0)


def test_get_order_access(db, shared_order, buyer, other_buyer, other_seller, admin):
    assert orders.get_order(db, shared_order["id"], buyer)["total_price"] == 230.0
    assert orders.get_order(db, shared_order["id"], admin)["total_price"] == 230.0

    seller_view = orders.get_order(db, shared_order["id"], other_seller)
    assert seller_view["subtotal"] == 30.0
    assert len(seller_view["items"]) == 1

    with pytest.raises(AuthorizationError):
        orders.get_order(db, shared_order["id"], other_buyer)


def test_views_do_not_mutate(db, shared_order, buyer, seller):
    before = db["order"].find_one({})
    orders.seller_orders(db, seller.id)
    orders.buyer_orders(db, buyer.id)
    orders.get_order(db, shared_order["id"], seller)
    assert db["order"].find_one({}) == before


def test_all_orders(db, shared_order, buyer, make_listing):
    gem = make_listing()
    cancelled = orders.place_order(db, buyer.id, order_request((gem["id"], 1)))
    orders.cancel_order(db, cancelled["id"], buyer)

    assert orders.all_orders(db)[1] == 2
    views, total = orders.all_orders(db, status="cancelled")
    assert total == 1
    assert views[0]["id"] == cancelled["id"]


def test_seller_stats(db, shared_order, buyer, seller, make_listing):
    gem = make_listing(price=50.0, stock=5)
    dropped = orders.place_order(db, buyer.id, order_request((gem["id"], 1)))
    orders.cancel_order(db, dropped["id"], buyer)

    stats = orders.seller_stats(db, seller.id)
    assert stats["total_orders"] == 2
    assert stats["total_revenue"] == 200.0
    assert stats["orders_by_status"]["pending"] == 1
    assert stats["orders_by_status"]["cancelled"] == 1
    assert stats["revenue_by_status"]["cancelled"] == 50.0
    assert stats["recent_orders"] == 1
    assert stats["average_order_value"] == 200.0

    later = orders.seller_stats(db, seller.id, now=utcnow() + timedelta(days=45))
    assert later["recent_orders"] == 0
