import os

os.environ.setdefault("ENVIRONMENT", "test")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import catalog  # noqa: E402
from access import Principal, Role  # noqa: E402
from database import ensure_indexes  # noqa: E402
from schemas import OrderLineIn, PlaceOrderRequest, ShippingAddress  # noqa: E402


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9800000000",
    "address_line1": "12 MG Road",
    "city": "Jaipur",
    "state": "Rajasthan",
    "pincode": "302001",
    "country": "India",
}


def listing_attrs(**overrides):
    attrs = {
        "name": "Blue Sapphire",
        "hindi_name": "Neelam",
        "planet": "Saturn",
        "color": "Blue",
        "description": "Ceylon blue sapphire, unheated",
        "category": "Blue Sapphire (Neelam)",
        "price": 100.0,
        "size_weight": 5.25,
        "size_unit": "carat",
        "stock": 3,
        "certification": "GIA",
        "origin": "Sri Lanka",
        "delivery_days": 5,
        "hero_image": "https://img.example.com/neelam.jpg",
    }
    attrs.update(overrides)
    return attrs


def headers(principal):
    return {"X-User-Id": principal.id, "X-User-Role": principal.role.value}


def order_request(*lines, **kwargs):
    """Build a PlaceOrderRequest from (listing_id, quantity[, price]) tuples."""
    items = []
    for line in lines:
        listing_id, quantity = line[0], line[1]
        price = line[2] if len(line) > 2 else None
        items.append(OrderLineIn(listing_id=listing_id, quantity=quantity, price=price))
    return PlaceOrderRequest(items=items, shipping_address=ShippingAddress(**ADDRESS), **kwargs)


@pytest.fixture()
def db():
    database = mongomock.MongoClient()["gem_marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture()
def buyer():
    return Principal(id="buyer-1", role=Role.BUYER)


@pytest.fixture()
def other_buyer():
    return Principal(id="buyer-2", role=Role.BUYER)


@pytest.fixture()
def seller():
    return Principal(id="seller-1", role=Role.SELLER)


@pytest.fixture()
def other_seller():
    return Principal(id="seller-2", role=Role.SELLER)


@pytest.fixture()
def admin():
    return Principal(id="admin-1", role=Role.ADMIN)


@pytest.fixture()
def make_listing(db, seller):
    def _make(seller_id=None, **overrides):
        return catalog.create_listing(db, seller_id or seller.id, listing_attrs(**overrides))

    return _make


@pytest.fixture()
def stock_of(db):
    def _stock(listing_id):
        return catalog.get_listing(db, listing_id)["stock"]

    return _stock


@pytest.fixture()
def client(db):
    from main import app, get_database

    app.dependency_overrides[get_database] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
